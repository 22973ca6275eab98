"""Better Steam AutoCracker: client-side orchestration for preparing installed games."""

__version__ = "1.2.0"
