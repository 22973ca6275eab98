import glob
import logging
import os
from typing import Optional

import aiofiles
import vdf

from .errors import DirectorySelectionError, describe_error
from .models import is_literal_catalog_id

logger = logging.getLogger(__name__)


def validate_install_dir(path: Optional[str]) -> bool:
    return bool(path) and os.path.isdir(path)


def require_install_dir(path: Optional[str]) -> str:
    """Returns the absolute install folder or raises DirectorySelectionError."""
    if not path:
        raise DirectorySelectionError("No folder selected")
    if not os.path.isdir(path):
        raise DirectorySelectionError(f"Not a folder: {path}")
    return os.path.abspath(path)


async def _read_text(path: str) -> str:
    async with aiofiles.open(path, "r", encoding="utf-8", errors="ignore") as f:
        return await f.read()


async def read_steam_appid_file(install_path: str) -> Optional[str]:
    appid_file = os.path.join(install_path, "steam_appid.txt")
    if not os.path.isfile(appid_file):
        return None
    try:
        content = (await _read_text(appid_file)).strip()
    except OSError as e:
        logger.warning("Could not read %s: %s", appid_file, describe_error(e))
        return None
    return content if is_literal_catalog_id(content) else None


async def find_appmanifest_id(install_path: str) -> Optional[str]:
    """
    Looks for the appmanifest of a steamapps/common/<dir> install and returns
    the appid whose installdir matches <dir>.
    """
    install_path = os.path.normpath(install_path)
    common_dir = os.path.dirname(install_path)
    if os.path.basename(common_dir).lower() != "common":
        return None
    steamapps_dir = os.path.dirname(common_dir)
    folder_name = os.path.basename(install_path).lower()

    for manifest_path in sorted(glob.glob(os.path.join(steamapps_dir, "appmanifest_*.acf"))):
        try:
            manifest = vdf.loads(await _read_text(manifest_path))
        except (OSError, SyntaxError, ValueError) as e:
            logger.warning("Skipping %s: %s", manifest_path, describe_error(e))
            continue
        app_state = manifest.get("AppState", {})
        if not isinstance(app_state, dict):
            continue
        if str(app_state.get("installdir", "")).lower() == folder_name:
            appid = str(app_state.get("appid", "")).strip()
            if is_literal_catalog_id(appid):
                return appid
    return None


async def suggest_catalog_id(install_path: str) -> Optional[str]:
    """Best guess at the catalog id of the game installed at install_path."""
    if not validate_install_dir(install_path):
        return None
    appid = await read_steam_appid_file(install_path)
    if appid:
        return appid
    return await find_appmanifest_id(install_path)
