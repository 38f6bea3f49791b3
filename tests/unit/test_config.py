import json
from pathlib import Path

import pytest

from app.utils.config import ConfigurationError, Settings, load_pipeline_config

CONFIG = {
    "source_store": "Google Drive",
    "temp_storage_folder": "/tmp/scriptoria",
    "bundles": [
        {
            "source_folder": "folder-a",
            "archive_folder": "folder-a-archive",
            "dest_attachments_folder": "/vault/attachments",
            "dest_notes_folder": "/vault/notes",
        }
    ],
}


@pytest.fixture
def config_file(tmp_path) -> Path:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(CONFIG))
    return path


def test_load_pipeline_config(config_file):
    config = load_pipeline_config(config_file)

    assert config.source_store == "Google Drive"
    assert config.dest_store == "Local"
    assert config.stages == ["temp_storage", "mathpix", "chatgpt", "obsidian", "bundle"]


def test_local_storage_path_overrides_temp_folder(config_file, tmp_path):
    settings = Settings(_env_file=None, local_storage_path=tmp_path / "staging")

    config = load_pipeline_config(config_file, settings)

    assert config.temp_storage_folder == str(tmp_path / "staging")


def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigurationError, match="Failed to read"):
        load_pipeline_config(tmp_path / "missing.json")


def test_invalid_config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"bundles": []}))

    with pytest.raises(ConfigurationError, match="Invalid config"):
        load_pipeline_config(path)


def test_malformed_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")

    with pytest.raises(ConfigurationError):
        load_pipeline_config(path)


def test_require_names_missing_settings():
    settings = Settings(_env_file=None, google_webhook_url="https://hook.test", google_service_key_file=None)

    settings.require("google_webhook_url")
    with pytest.raises(ConfigurationError, match="GOOGLE_SERVICE_KEY_FILE"):
        settings.require("google_webhook_url", "google_service_key_file")
