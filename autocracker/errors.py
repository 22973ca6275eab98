class AutoCrackerError(Exception):
    """Base class for errors raised by the collaborators."""


class SettingsError(AutoCrackerError):
    pass


class CatalogError(AutoCrackerError):
    """Transport or decode failure against a catalog endpoint."""


class PatchError(AutoCrackerError):
    """The apply-task failed. The message is shown to the user verbatim."""


class DirectorySelectionError(AutoCrackerError):
    pass


def describe_error(e: BaseException) -> str:
    return f"{type(e).__name__}: {e}"
