import asyncio
import json

import pytest

from autocracker.errors import SettingsError
from autocracker.settings import DEFAULT_SETTINGS, SettingsManager


def test_missing_file_gives_defaults(tmp_path):
    manager = SettingsManager(str(tmp_path / "settings.json"))
    settings = asyncio.run(manager.load())
    assert settings == DEFAULT_SETTINGS


def test_file_values_override_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"theme": "light", "game_language": "german"}))
    manager = SettingsManager(str(path))
    asyncio.run(manager.load())
    assert manager.get("theme") == "light"
    assert manager.get("game_language") == "german"
    assert manager.get("language") == "en"


def test_unknown_theme_falls_back(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"theme": "purple"}))
    manager = SettingsManager(str(path))
    asyncio.run(manager.load())
    assert manager.get("theme") == "dark"


def test_corrupt_file_raises_on_load(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json")
    manager = SettingsManager(str(path))
    with pytest.raises(SettingsError):
        asyncio.run(manager.load())


def test_load_or_default_never_raises(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("[1, 2, 3]")
    manager = SettingsManager(str(path))
    settings = asyncio.run(manager.load_or_default())
    assert settings == DEFAULT_SETTINGS


def test_saved_settings_are_loaded_back(tmp_path):
    path = tmp_path / "settings.json"
    manager = SettingsManager(str(path))
    manager.set("theme", "light")
    manager.set("last_install_path", "/games/silksong")
    asyncio.run(manager.save())

    reloaded = SettingsManager(str(path))
    asyncio.run(reloaded.load())
    assert reloaded.get("theme") == "light"
    assert reloaded.get("last_install_path") == "/games/silksong"


def test_save_to_unwritable_location_raises(tmp_path):
    manager = SettingsManager(str(tmp_path / "missing-dir" / "settings.json"))
    with pytest.raises(SettingsError):
        asyncio.run(manager.save())
