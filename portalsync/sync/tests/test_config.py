"""
Unit tests for settings and request models.
"""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from ..config import SyncSettings, HttpSettings, StorageSettings, FetchRequest, Download
from ..error_tracker import ConfigurationError


class TestSyncSettings:

    def test_defaults(self):
        settings = SyncSettings()
        assert settings.http.max_attempts == 3
        assert settings.http.timeout == 30.0
        assert settings.http.terminal_header == "X-Page"
        assert settings.storage.content_language == "de"
        assert settings.min_age == timedelta(days=1)

    def test_yaml_round_trip(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "portalsync.yaml"
            settings = SyncSettings(
                name="kreistag",
                http={"max_attempts": 5, "use_proxy": True},
                proxy={"url": "https://proxies.example.com/list", "parser": "plain"},
                min_age_before_download=600,
            )
            settings.to_yaml(path)

            with patch.dict("os.environ", {}, clear=True):
                loaded = SyncSettings.from_yaml(path)

            assert loaded == settings

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            SyncSettings.from_yaml("/nonexistent/portalsync.yaml")

    def test_use_proxy_requires_url(self):
        with patch.dict("os.environ", {}, clear=True):
            with pytest.raises(ConfigurationError, match="proxy.url"):
                SyncSettings.from_dict({"http": {"use_proxy": True}})

    def test_env_overrides(self):
        env = {
            "PORTALSYNC_PROXY_SECRET": "from-env",
            "PORTALSYNC_PROXY_URL": "https://env-proxies.example.com/",
            "PORTALSYNC_STORE_ROOT": "/var/lib/portalsync",
            "PORTALSYNC_LOG_LEVEL": "DEBUG",
        }
        with patch.dict("os.environ", env, clear=True):
            settings = SyncSettings.from_dict({"proxy": {"secret": "from-file", "host": "portal"}})

        assert settings.proxy.secret == "from-env"
        assert settings.proxy.host == "portal"
        assert settings.proxy.url == "https://env-proxies.example.com/"
        assert settings.storage.root_directory == "/var/lib/portalsync"
        assert settings.log_level == "DEBUG"

    def test_invalid_values(self):
        with pytest.raises(ValidationError):
            HttpSettings(max_attempts=0)
        with pytest.raises(ValidationError):
            HttpSettings(retry_delay=10, max_retry_delay=5)
        with pytest.raises(ValidationError):
            StorageSettings(bucket_fetched="same", bucket_backup="same")
        with patch.dict("os.environ", {}, clear=True):
            with pytest.raises(ConfigurationError):
                SyncSettings.from_dict({"proxy": {"url": "not a url"}})


class TestFetchRequest:

    def test_method_follows_form_data(self):
        assert FetchRequest(url="https://x.example/a").method == "GET"
        assert FetchRequest(url="https://x.example/a", form_data={}).method == "POST"

    def test_name_and_folder_normalized(self):
        request = FetchRequest(url="https://x.example/a", folder="sitzungen", name="Sitzung  Kreistag (öffentlich)", ending=".html")
        assert request.folder == "sitzungen/"
        assert request.name == "Sitzung-Kreistag-offentlich"
        assert request.filename == "Sitzung-Kreistag-offentlich.html"

    def test_naive_created_is_utc(self):
        request = FetchRequest(url="https://x.example/a", created=datetime(2024, 1, 1, 10, 0))
        assert request.created == datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


def test_download_size():
    assert Download("a.pdf", "application/pdf", b"1234", 200).size == 4
