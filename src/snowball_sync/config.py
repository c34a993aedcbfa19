"""Configuration for snowball-sync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

OneMb = 1024 * 1024
OneGb = 1024 * OneMb


@dataclass
class AWSConfig:
    """AWS credentials and endpoint settings."""

    profile: Optional[str] = None
    region: str = "us-east-1"
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    # Snowball devices expose an S3 endpoint on port 8080
    endpoint: Optional[str] = None

    @property
    def endpoint_url(self) -> Optional[str]:
        """Endpoint as a URL, a bare host is assumed to be a Snowball device."""
        if not self.endpoint:
            return None
        if self.endpoint.startswith("http"):
            return self.endpoint
        return f"http://{self.endpoint}:8080"


@dataclass
class UploadConfig:
    """Upload batching, concurrency and retry settings."""

    concurrency: int = 5
    # Files at or below this size are packed into tar batches
    small_file_threshold: int = 1 * OneMb
    # Snowball allows up to 100,000 files and 100GB per tar
    max_batch_files: int = 10_000
    max_batch_bytes: int = 5 * OneGb
    retry_count: int = 3
    retry_delay: float = 0.5
    failure_policy: str = "abort"


@dataclass
class ManifestConfig:
    """Manifest persistence settings."""

    flush_delay: float = 15.0
    max_flush_failures: int = 3
    backup_suffix: str = ".1"
    progress_every: int = 5_000


@dataclass
class ResumeConfig:
    """Resume point search settings."""

    max_probes: int = 50
    margin: int = 5


@dataclass
class Config:
    """Main configuration object."""

    aws: AWSConfig = field(default_factory=AWSConfig)
    upload: UploadConfig = field(default_factory=UploadConfig)
    manifest: ManifestConfig = field(default_factory=ManifestConfig)
    resume: ResumeConfig = field(default_factory=ResumeConfig)
    verbose: bool = False
    config_dir: Path = field(default_factory=lambda: Path.home() / ".snowball-sync")

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from SNOWBALL_* environment variables."""
        config = cls()

        config.aws.profile = os.getenv("SNOWBALL_AWS_PROFILE", config.aws.profile)
        config.aws.region = os.getenv("SNOWBALL_AWS_REGION", config.aws.region)
        config.aws.access_key_id = os.getenv("SNOWBALL_AWS_ACCESS_KEY_ID", config.aws.access_key_id)
        config.aws.secret_access_key = os.getenv(
            "SNOWBALL_AWS_SECRET_ACCESS_KEY", config.aws.secret_access_key
        )
        config.aws.endpoint = os.getenv("SNOWBALL_ENDPOINT", config.aws.endpoint)

        if os.getenv("SNOWBALL_CONCURRENCY"):
            config.upload.concurrency = int(os.environ["SNOWBALL_CONCURRENCY"])
        if os.getenv("SNOWBALL_FLUSH_DELAY"):
            config.manifest.flush_delay = float(os.environ["SNOWBALL_FLUSH_DELAY"])
        if os.getenv("SNOWBALL_FAILURE_POLICY"):
            config.upload.failure_policy = os.environ["SNOWBALL_FAILURE_POLICY"].lower()

        config.verbose = os.getenv("SNOWBALL_VERBOSE", "").lower() in ("true", "1", "yes")

        return config

    def get_aws_session_kwargs(self) -> Dict[str, Any]:
        """Get kwargs for boto3.Session."""
        kwargs: Dict[str, Any] = {}
        if self.aws.profile:
            kwargs["profile_name"] = self.aws.profile
        if self.aws.region:
            kwargs["region_name"] = self.aws.region
        return kwargs

    def get_s3_client_kwargs(self) -> Dict[str, Any]:
        """Get kwargs for the S3 client."""
        kwargs: Dict[str, Any] = {"region_name": self.aws.region}
        if self.aws.access_key_id and self.aws.secret_access_key:
            kwargs["aws_access_key_id"] = self.aws.access_key_id
            kwargs["aws_secret_access_key"] = self.aws.secret_access_key
        if self.aws.endpoint_url:
            kwargs["endpoint_url"] = self.aws.endpoint_url
        return kwargs
