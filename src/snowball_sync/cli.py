"""Command-line interface for snowball-sync."""

import asyncio
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.table import Table
from typing_extensions import Annotated

from snowball_sync import __version__
from snowball_sync.config import OneMb, Config
from snowball_sync.config_manager import get_config_path, load_config, save_config
from snowball_sync.errors import SnowballSyncError, UploadRetriesExhausted
from snowball_sync.log import setup_logging
from snowball_sync.sync_engine import SmartSync
from snowball_sync.upload import FailurePolicy

app = typer.Typer(
    name="snowball-sync",
    help="Simple snowball sync - sync large file trees to S3 or a Snowball device",
    add_completion=False,
)
console = Console()

# Color constants for consistent styling
class Colors:
    RED = "[red]"
    GREEN = "[green]"
    RESET = "[/red]"
    GREEN_RESET = "[/green]"

# Message templates for consistent formatting
class Messages:
    CONFIG_LOAD_ERROR = "Error loading configuration: {error}"
    SYNC_ERROR = "Sync failed: {error}"
    TARGET_NOT_CONFIGURED = "Error: --target is required, eg s3://bucket/prefix"
    INVALID_CONCURRENCY = "Error: --concurrency must be at least 1"

    CONFIG_SAVED = "Configuration saved to {path}"
    DRY_RUN_COMPLETED = "Dry run completed"
    SYNC_COMPLETED = "Sync completed successfully"
    SYNC_INCOMPLETE = "Sync finished with {count} failure(s)"
    VALIDATE_OK = "All hashes match"
    VALIDATE_FAILED = "Validation failed: {missing} missing, {mismatch} mismatched"

# Common message helpers
def error_msg(message: str) -> str:
    """Format error message with consistent styling."""
    return f"{Colors.RED}{message}{Colors.RESET}"

def success_msg(message: str) -> str:
    """Format success message with consistent styling."""
    return f"{Colors.GREEN}{message}{Colors.GREEN_RESET}"

def format_file_count(file_count: int, action: str) -> str:
    """Format file count message with consistent styling."""
    return f"\n{action} {file_count} file(s)"

# Configuration helpers
def _load_and_configure(
    profile: Optional[str] = None,
    endpoint: Optional[str] = None,
    concurrency: Optional[int] = None,
    verbose: bool = False,
) -> Config:
    """Load configuration, apply saved defaults then command line overrides."""
    try:
        config = Config.from_env()
        saved = load_config(get_config_path()) or {}
    except Exception as e:
        console.print(error_msg(Messages.CONFIG_LOAD_ERROR.format(error=e)))
        raise typer.Exit(1)

    config.aws.profile = profile or saved.get("profile") or config.aws.profile
    config.aws.endpoint = endpoint or saved.get("endpoint") or config.aws.endpoint
    if concurrency is not None:
        config.upload.concurrency = concurrency
    elif saved.get("concurrency") is not None:
        config.upload.concurrency = saved["concurrency"]
    config.verbose = verbose or config.verbose
    return config

def _validate_configuration(config: Config, target: Optional[str]) -> None:
    """Validate required sync settings."""
    if not target:
        console.print(error_msg(Messages.TARGET_NOT_CONFIGURED))
        raise typer.Exit(1)
    _validate_concurrency(config)

def _validate_concurrency(config: Config) -> None:
    if config.upload.concurrency < 1:
        console.print(error_msg(Messages.INVALID_CONCURRENCY))
        raise typer.Exit(1)

def _resolve_root(root: str) -> str:
    """Object store locators are used as is, local paths are made absolute."""
    if root.startswith("s3://"):
        return root
    return str(Path(root).resolve())

def _run(config: Config, coro: Any) -> Dict[str, Any]:
    """Run an engine coroutine, turning typed failures into exit code 1."""
    try:
        return asyncio.run(coro)
    except SnowballSyncError as e:
        console.print(error_msg(Messages.SYNC_ERROR.format(error=e)))
        if config.verbose and isinstance(e, UploadRetriesExhausted):
            console.print(e.format_errors())
        elif config.verbose:
            console.print_exception()
        raise typer.Exit(1)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"snowball-sync {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show version and exit"),
    ] = None,
) -> None:
    """Simple snowball sync - sync large file trees to S3 or a Snowball device."""


@app.command()
def manifest(
    root: Annotated[str, typer.Argument(help="Directory or s3:// prefix to scan")],
    output: Annotated[Optional[str], typer.Option(help="Manifest file to write")] = None,
    verbose: Annotated[bool, typer.Option(help="Verbose logging")] = False,
) -> None:
    """Create a manifest listing every file under ROOT."""
    config = _load_and_configure(verbose=verbose)
    setup_logging(config.verbose)

    result = _run(config, SmartSync(config).create_manifest(_resolve_root(root), output))
    console.print(format_file_count(result["files"], "Listed"))
    console.print(success_msg(f"Manifest written to {result['manifest_path']}"))


@app.command("hash")
def hash_command(
    manifest_path: Annotated[str, typer.Argument(metavar="MANIFEST", help="Manifest file location")],
    concurrency: Annotated[Optional[int], typer.Option(help="Number of files to hash at once")] = None,
    verbose: Annotated[bool, typer.Option(help="Verbose logging")] = False,
) -> None:
    """Hash every file in the manifest that does not have a hash yet."""
    config = _load_and_configure(concurrency=concurrency, verbose=verbose)
    _validate_concurrency(config)
    setup_logging(config.verbose)

    result = _run(config, SmartSync(config).hash_manifest(manifest_path))
    console.print(format_file_count(result["hashed"], "Hashed"))


@app.command()
def sync(
    manifest_path: Annotated[str, typer.Argument(metavar="MANIFEST", help="Manifest file location")],
    target: Annotated[Optional[str], typer.Option(help="S3 location to store files, eg s3://bucket/prefix")] = None,
    endpoint: Annotated[Optional[str], typer.Option(help="Snowball endpoint, host or URL")] = None,
    concurrency: Annotated[Optional[int], typer.Option(help="Number of uploads to run at once")] = None,
    filter_mb: Annotated[
        float, typer.Option("--filter", help="Tar files this size (MB) or smaller, negative disables tars")
    ] = 1,
    profile: Annotated[Optional[str], typer.Option(help="AWS profile")] = None,
    continue_on_error: Annotated[
        bool, typer.Option(help="Keep going when a file exhausts its retries instead of aborting")
    ] = False,
    resume: Annotated[bool, typer.Option(help="Search for where a previous run stopped")] = True,
    dry_run: Annotated[bool, typer.Option(help="Show the upload plan without uploading")] = False,
    verbose: Annotated[bool, typer.Option(help="Verbose logging")] = False,
) -> None:
    """Upload every file in MANIFEST to the target."""
    config = _load_and_configure(profile, endpoint, concurrency, verbose)
    _validate_configuration(config, target)
    setup_logging(config.verbose)

    config.upload.small_file_threshold = int(filter_mb * OneMb)
    if continue_on_error:
        config.upload.failure_policy = FailurePolicy.CONTINUE.value

    result = _run(config, SmartSync(config).sync(manifest_path, target, dry_run=dry_run, use_resume=resume))
    _display_results(result)


def _display_results(result: Dict[str, Any]) -> None:
    """Display sync results."""
    if result.get("dry_run"):
        table = Table(title="Upload plan")
        table.add_column("Kind")
        table.add_column("Count", justify="right")
        table.add_row("Big files", str(result["big_files"]))
        table.add_row("Small files", str(result["small_files"]))
        table.add_row("Tar batches", str(result["batches"]))
        console.print(table)
        console.print(success_msg(Messages.DRY_RUN_COMPLETED))
        return

    console.print(format_file_count(result["files_uploaded"], "Uploaded"))
    if result["batches_skipped"]:
        console.print(f"Skipped {result['batches_skipped']} batch(es) already on the target")

    failures = result["failures"]
    problems = result["problems"]
    for problem in problems:
        console.print(error_msg(problem))
    if failures or problems:
        for label in failures:
            console.print(error_msg(f"Failed: {label}"))
        console.print(error_msg(Messages.SYNC_INCOMPLETE.format(count=len(failures) + len(problems))))
        raise typer.Exit(1)

    console.print(success_msg(Messages.SYNC_COMPLETED))
    console.print()


@app.command()
def validate(
    manifest_path: Annotated[str, typer.Argument(metavar="MANIFEST", help="Manifest file location")],
    concurrency: Annotated[Optional[int], typer.Option(help="Number of files to hash at once")] = None,
    verbose: Annotated[bool, typer.Option(help="Verbose logging")] = False,
) -> None:
    """Re-hash the files in MANIFEST and compare them with the recorded hashes."""
    config = _load_and_configure(concurrency=concurrency, verbose=verbose)
    _validate_concurrency(config)
    setup_logging(config.verbose)

    result = _run(config, SmartSync(config).validate(manifest_path))
    if not result["valid"]:
        console.print(
            error_msg(Messages.VALIDATE_FAILED.format(missing=result["hash_missing"], mismatch=result["hash_mismatch"]))
        )
        raise typer.Exit(1)
    console.print(success_msg(Messages.VALIDATE_OK))


@app.command()
def init(
    profile: Annotated[Optional[str], typer.Option(help="Default AWS profile")] = None,
    endpoint: Annotated[Optional[str], typer.Option(help="Default Snowball endpoint")] = None,
    concurrency: Annotated[Optional[int], typer.Option(help="Default upload concurrency")] = None,
) -> None:
    """Save default settings to the user configuration file."""
    config_path = get_config_path()
    config_data = load_config(config_path) or {}
    for key, value in (("profile", profile), ("endpoint", endpoint), ("concurrency", concurrency)):
        if value is not None:
            config_data[key] = value

    save_config(config_path, config_data)
    console.print(success_msg(Messages.CONFIG_SAVED.format(path=config_path)))


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
