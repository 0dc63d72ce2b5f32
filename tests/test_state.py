"""Tests for the upload manifest store."""

import json

from pyb2backup.sync.state import ManifestStore, UploadManifest


class TestManifestStore:
    """Test loading and saving manifests."""

    def test_load_missing_returns_empty(self, tmp_path):
        store = ManifestStore(tmp_path)
        manifest = store.load("photos-2020")
        assert manifest.bucket_name == "photos-2020"
        assert manifest.files == {}

    def test_save_and_load(self, tmp_path):
        store = ManifestStore(tmp_path)
        manifest = UploadManifest("photos-2020", {"big.bin": "a" * 40})

        store.save(manifest)
        loaded = store.load("photos-2020")

        assert loaded.files == {"big.bin": "a" * 40}
        assert loaded.last_update is not None

    def test_manifests_are_per_bucket(self, tmp_path):
        store = ManifestStore(tmp_path)
        store.save(UploadManifest("photos-2020", {"a": "1"}))
        store.save(UploadManifest("photos-2021", {"b": "2"}))

        assert store.load("photos-2020").files == {"a": "1"}
        assert store.load("photos-2021").files == {"b": "2"}

    def test_corrupt_file_returns_empty(self, tmp_path):
        store = ManifestStore(tmp_path)
        store.save(UploadManifest("photos-2020", {"a": "1"}))
        manifest_file = next(tmp_path.glob("*.json"))
        manifest_file.write_text("{not json")

        assert store.load("photos-2020").files == {}

    def test_saved_file_is_json(self, tmp_path):
        store = ManifestStore(tmp_path)
        store.save(UploadManifest("photos-2020", {"b": "2", "a": "1"}))

        data = json.loads(next(tmp_path.glob("*.json")).read_text())
        assert data["bucket_name"] == "photos-2020"
        assert list(data["files"]) == ["a", "b"]

    def test_clear(self, tmp_path):
        store = ManifestStore(tmp_path)
        store.save(UploadManifest("photos-2020", {"a": "1"}))

        assert store.clear("photos-2020") is True
        assert store.clear("photos-2020") is False
        assert store.load("photos-2020").files == {}

    def test_creates_state_dir(self, tmp_path):
        state_dir = tmp_path / "nested" / "manifests"
        ManifestStore(state_dir)
        assert state_dir.is_dir()
