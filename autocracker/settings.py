import copy
import json
import logging
import os
from typing import Any, Dict

import aiofiles

from .errors import SettingsError, describe_error
from .patcher import DEFAULT_COMMAND

logger = logging.getLogger(__name__)

THEMES = ("light", "dark")

DEFAULT_SETTINGS: Dict[str, Any] = {
    "theme": "dark",
    "language": "en",
    "game_language": None,
    "patcher_command": DEFAULT_COMMAND,
    "last_install_path": "",
    "window_geometry": "760x620",
}


# --- Settings Manager ---
class SettingsManager:
    """Manages application settings, including loading from and saving to a config file."""

    def __init__(self, config_file: str = "settings.json"):
        self.config_file = config_file
        self._settings: Dict[str, Any] = copy.deepcopy(DEFAULT_SETTINGS)

    async def load(self) -> Dict[str, Any]:
        """Merges the config file over the defaults. Raises SettingsError."""
        settings = copy.deepcopy(DEFAULT_SETTINGS)
        if os.path.exists(self.config_file):
            try:
                async with aiofiles.open(self.config_file, "r", encoding="utf-8") as f:
                    loaded_settings = json.loads(await f.read())
            except (json.JSONDecodeError, OSError) as e:
                raise SettingsError(
                    f"Failed to load settings: {describe_error(e)}"
                ) from e
            if not isinstance(loaded_settings, dict):
                raise SettingsError("Failed to load settings: not a JSON object")
            settings.update(loaded_settings)

        if settings.get("theme") not in THEMES:
            settings["theme"] = DEFAULT_SETTINGS["theme"]
        self._settings = settings
        return self._settings

    async def load_or_default(self) -> Dict[str, Any]:
        try:
            return await self.load()
        except SettingsError as e:
            logger.warning("%s; using defaults", e)
            self._settings = copy.deepcopy(DEFAULT_SETTINGS)
            return self._settings

    async def save(self) -> None:
        """Saves current settings to the JSON config file."""
        try:
            async with aiofiles.open(self.config_file, "w", encoding="utf-8") as f:
                await f.write(json.dumps(self._settings, indent=4))
        except OSError as e:
            raise SettingsError(f"Failed to save settings: {describe_error(e)}") from e

    def get(self, key: str, default: Any = None) -> Any:
        return self._settings.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._settings[key] = value

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._settings)
