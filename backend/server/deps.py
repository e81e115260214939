from __future__ import annotations

from tiltwatch.config import EngineSettings, get_settings
from tiltwatch.store import Store


def settings() -> EngineSettings:
    return get_settings()


def store() -> Store:
    # resolves the db path per call so TILTWATCH_DB_PATH is honoured at runtime
    return Store()


__all__ = [
    "settings",
    "store",
]
