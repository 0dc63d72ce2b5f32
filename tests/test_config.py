"""Tests for configuration loading."""

import pytest

from pyb2backup.config import DEFAULT_API_URL, Config


@pytest.fixture
def clean_env(monkeypatch):
    for key in (
        "B2_APPLICATION_KEY_ID",
        "B2_APPLICATION_KEY",
        "B2_API_URL",
        "PYB2BACKUP_SMB_DOMAIN",
    ):
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestConfig:
    """Tests for Config."""

    def test_defaults(self, clean_env, tmp_path):
        config = Config(tmp_path)
        assert config.api_url == DEFAULT_API_URL
        assert config.smb_domain == "WORKGROUP"
        assert config.application_key_id is None
        assert not config.is_configured()

    def test_reads_config_file(self, clean_env, tmp_path):
        (tmp_path / "config").write_text(
            "# credentials\n"
            "B2_APPLICATION_KEY_ID=file-id\n"
            "B2_APPLICATION_KEY='file-key'\n"
        )
        config = Config(tmp_path)
        assert config.application_key_id == "file-id"
        assert config.application_key == "file-key"
        assert config.is_configured()

    def test_environment_wins(self, clean_env, tmp_path):
        (tmp_path / "config").write_text("B2_APPLICATION_KEY_ID=file-id\n")
        clean_env.setenv("B2_APPLICATION_KEY_ID", "env-id")
        assert Config(tmp_path).application_key_id == "env-id"

    def test_config_path(self, tmp_path):
        assert Config(tmp_path).get_config_path() == tmp_path / "config"
