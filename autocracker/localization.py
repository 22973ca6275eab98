import json
import logging
import os
from typing import Dict, Optional

logger = logging.getLogger(__name__)

LANG_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "lang")

# --- Global Localization Manager Placeholder ---
_LOC_MANAGER: Optional["LocalizationManager"] = None


def _(text: str) -> str:
    """Translation lookup function."""
    if _LOC_MANAGER:
        return _LOC_MANAGER.get_string(text)
    return text


def install(manager: Optional["LocalizationManager"]) -> None:
    """Makes manager the one used by _()."""
    global _LOC_MANAGER
    _LOC_MANAGER = manager


class LocalizationManager:
    def __init__(self, lang_dir: str = LANG_DIR):
        self.lang_dir = lang_dir
        self.translations: Dict[str, Dict[str, str]] = {}
        self.current_language: str = "en"
        self._load_all_translations()

    def _load_all_translations(self) -> None:
        """
        Loads every JSON file in the language directory, named after its
        language code (e.g. 'en.json', 'fr.json'). Keys are the English
        strings, so a missing entry falls back to the key itself.
        """
        if not os.path.isdir(self.lang_dir):
            logger.warning("Language directory '%s' not found.", self.lang_dir)
        else:
            for filename in sorted(os.listdir(self.lang_dir)):
                if not filename.endswith(".json"):
                    continue
                lang_code = filename[:-5]
                filepath = os.path.join(self.lang_dir, filename)
                try:
                    with open(filepath, "r", encoding="utf-8") as f:
                        self.translations[lang_code] = json.load(f)
                except (json.JSONDecodeError, IOError) as e:
                    logger.error("Error loading language file %s: %s", filename, e)

        if "en" not in self.translations:
            self.translations["en"] = {}

    def get_string(self, key: str) -> str:
        lang_translations = self.translations.get(self.current_language, {})
        return lang_translations.get(key, key)

    def set_language(self, lang_code: str) -> bool:
        if lang_code not in self.translations:
            logger.warning("Language '%s' not found.", lang_code)
            return False
        self.current_language = lang_code
        return True

    def get_available_languages(self) -> Dict[str, str]:
        """Returns a dict of available language codes to their display names."""
        display_names = {
            "en": "English",
            "fr": "Français",
        }
        return {
            code: display_names.get(code, code)
            for code in sorted(self.translations.keys())
        }

    def language_code_for(self, display_name: str) -> Optional[str]:
        for code, name in self.get_available_languages().items():
            if name == display_name:
                return code
        return None
