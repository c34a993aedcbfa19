"""Tests for the manifest entity and manifest comparison."""

import json

import pytest

from snowball_sync.errors import FileNotInManifest
from snowball_sync.manifest import (
    Manifest,
    ManifestFile,
    is_manifests_different,
    manifest_name_for,
    normalize_path,
)


def create_manifest(files, path="/media/paul/RGBi1"):
    """Build a manifest; size defaults to the path length and hash to the path."""
    manifest = Manifest(path)
    for file in files:
        size = file.get("size", len(file["path"]))
        file_hash = file.get("hash", file["path"])
        if file_hash == "empty":
            file_hash = None
        manifest.add(file["path"], size, file_hash)
    return manifest


class TestManifestDiff:
    """Test is_manifests_different."""

    def setup_method(self):
        self.manifest_a = create_manifest(
            [{"path": "RGBi Imagery/RGBI_Canterbury 0.3m Rural Aerial Photos (2015-16)/RGBI_BX16_5K_0607.tif"}]
        )
        self.manifest_b = create_manifest([{"path": "RGBi_otago_rural_2017-2019_0.3m/2018_BZ13_5000_0901.tif"}])
        self.manifest_c = create_manifest(
            [
                {"path": "RGBi_otago_rural_2017-2019_0.3m/2018_BZ13_5000_0901.tif"},
                {"path": "RGBi_otago_rural_2017-2019_0.3m/2018_BZ13_5000_0902.tif"},
            ]
        )
        self.manifest_d = create_manifest(
            [{"path": "RGBi_otago_rural_2017-2019_0.3m/2018_BZ13_5000_0901.tif", "size": 123}]
        )
        self.manifest_e = create_manifest(
            [{"path": "RGBi_otago_rural_2017-2019_0.3m/2018_BZ13_5000_0901.tif", "size": 123, "hash": "abc"}]
        )
        self.manifest_f = create_manifest(
            [{"path": "RGBi_otago_rural_2017-2019_0.3m/2018_BZ13_5000_0901.tif", "size": 123, "hash": "empty"}]
        )

    def test_different_files(self):
        assert is_manifests_different(self.manifest_a, self.manifest_b) is True

    def test_same_manifest(self):
        assert is_manifests_different(self.manifest_a, self.manifest_a) is False

    def test_superset_is_not_different(self):
        """An incremental manifest only adding files is not different."""
        assert is_manifests_different(self.manifest_c, self.manifest_b) is False

    def test_comparison_is_one_directional(self):
        assert is_manifests_different(self.manifest_b, self.manifest_c) is True

    def test_size_change_is_different(self):
        assert is_manifests_different(self.manifest_b, self.manifest_d) is True

    def test_hash_change_is_different(self):
        assert is_manifests_different(self.manifest_d, self.manifest_e) is True

    def test_missing_candidate_hash_is_not_compared(self):
        assert is_manifests_different(self.manifest_f, self.manifest_e) is False

    def test_missing_reference_hash_is_not_compared(self):
        assert is_manifests_different(self.manifest_e, self.manifest_f) is False

    def test_hashless_candidate_against_hashed_reference(self):
        """Different roots, same file; only the reference has a hash."""
        first = Manifest("/root", [ManifestFile("a.tif", 10)])
        second = Manifest("/other", [ManifestFile("a.tif", 10, "x")])

        assert is_manifests_different(first, second) is False

    def test_removing_file_from_candidate_is_different(self):
        candidate = create_manifest([{"path": "a.tif"}, {"path": "b.tif"}])
        reference = create_manifest([{"path": "a.tif"}, {"path": "b.tif"}])
        assert is_manifests_different(candidate, reference) is False

        del candidate.files["b.tif"]
        assert is_manifests_different(candidate, reference) is True


class TestManifest:
    """Test manifest operations."""

    def test_normalize_path(self):
        assert normalize_path("/a/b/c.tif") == "a/b/c.tif"
        assert normalize_path("a/b/") == "a/b"
        assert normalize_path("c.tif") == "c.tif"

    def test_paths_normalized_on_add(self):
        manifest = Manifest("/data")
        manifest.add("/folder/file.tif", 10)

        assert "folder/file.tif" in manifest
        assert manifest.get("folder/file.tif").size == 10

    def test_duplicate_path_rejected(self):
        manifest = Manifest("/data")
        manifest.add("a.tif", 1)

        with pytest.raises(ValueError):
            manifest.add("/a.tif", 2)

    def test_insertion_order_preserved(self):
        manifest = Manifest("/data")
        for name in ["z.tif", "a.tif", "m.tif"]:
            manifest.add(name, 1)

        assert [f.path for f in manifest] == ["z.tif", "a.tif", "m.tif"]

    def test_set_hash(self):
        manifest = Manifest("/data", [ManifestFile("a.tif", 5)])

        assert manifest.set_hash("a.tif", "sha256-abc") is True
        assert manifest.get("a.tif").hash == "sha256-abc"
        assert manifest.get("a.tif").size == 5

    def test_set_hash_unchanged_is_noop(self):
        manifest = Manifest("/data", [ManifestFile("a.tif", 5, "sha256-abc")])

        assert manifest.set_hash("a.tif", "sha256-abc") is False

    def test_set_hash_keeps_order(self):
        manifest = Manifest("/data", [ManifestFile("a.tif", 1), ManifestFile("b.tif", 2)])
        manifest.set_hash("a.tif", "sha256-abc")

        assert [f.path for f in manifest] == ["a.tif", "b.tif"]

    def test_set_hash_unknown_file(self):
        manifest = Manifest("/data")

        with pytest.raises(FileNotInManifest):
            manifest.set_hash("missing.tif", "sha256-abc")

    def test_size_is_immutable(self):
        file = ManifestFile("a.tif", 5)

        with pytest.raises(AttributeError):
            file.size = 10

    def test_total_size_and_completeness(self):
        manifest = Manifest("/data", [ManifestFile("a.tif", 5, "x"), ManifestFile("b.tif", 7)])

        assert manifest.total_size == 12
        assert manifest.is_complete is False
        manifest.set_hash("b.tif", "y")
        assert manifest.is_complete is True

    def test_filter(self):
        manifest = Manifest("/data", [ManifestFile("a.tif", 5, "x"), ManifestFile("b.tif", 7)])

        assert [f.path for f in manifest.filter(lambda f: f.hash is None)] == ["b.tif"]


class TestManifestSerialization:
    """Test the JSON form of manifests."""

    def test_to_dict_recomputes_size(self):
        manifest = Manifest("/data", [ManifestFile("a.tif", 5), ManifestFile("b.tif", 7, "sha256-b")])
        data = manifest.to_dict()

        assert data["path"] == "/data"
        assert data["size"] == 12
        assert data["correlationId"] == manifest.correlation_id
        assert data["files"] == [{"path": "a.tif", "size": 5}, {"path": "b.tif", "size": 7, "hash": "sha256-b"}]

    def test_stored_size_is_ignored(self):
        text = json.dumps({"path": "/data", "size": 999, "files": [{"path": "a.tif", "size": 5}]})
        manifest = Manifest.from_json(text)

        assert manifest.total_size == 5

    def test_correlation_id_preserved(self):
        manifest = Manifest("/data", [ManifestFile("a.tif", 5, "sha256-a")])
        loaded = Manifest.from_json(manifest.to_json())

        assert loaded.correlation_id == manifest.correlation_id
        assert [f for f in loaded] == [f for f in manifest]

    def test_correlation_id_generated_when_absent(self):
        manifest = Manifest.from_dict({"path": "/data", "files": []})
        assert manifest.correlation_id

    @pytest.mark.parametrize(
        "data",
        [
            [],
            {"files": []},
            {"path": "/data"},
            {"path": "/data", "files": [{"size": 1}]},
            {"path": "/data", "files": [{"path": "a.tif"}]},
            {"path": "/data", "files": [{"path": "a.tif", "size": "12"}]},
            {"path": "/data", "files": [{"path": "a.tif", "size": 12, "hash": 12}]},
            {"path": "/data", "files": [{"path": "a.tif", "size": 12, "hash": ["sha256-a"]}]},
        ],
    )
    def test_invalid_structure(self, data):
        with pytest.raises(ValueError):
            Manifest.from_dict(data)

    def test_manifest_name_for(self):
        assert manifest_name_for("/media/paul/RGBi1/") == "media_paul_RGBi1.manifest.json"
        assert manifest_name_for("/data/Aerial Photos") == "data_Aerial_Photos.manifest.json"
        assert manifest_name_for("s3://bucket/imagery") == "bucket_imagery.manifest.json"
