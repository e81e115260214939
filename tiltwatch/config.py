from __future__ import annotations

import os
import platform
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


APP_DIR_NAME = "tiltwatch"
CONFIG_FILE_NAME = "config.yaml"
DB_FILE_NAME = "tiltwatch.db"
DB_PATH_ENV = "TILTWATCH_DB_PATH"


DEFAULT_CONFIG: Dict[str, Any] = {
    "sessions": {
        # a gap strictly longer than this closes the session
        "gap_minutes": 30,
    },
    "analytics": {
        "min_sample_size": 5,
        "significant_drop": 0.15,
        "stale_hours": 6,
        "session_window": 50,
        "recent_sessions": 10,
        "loss_streak_window": 20,
    },
    "player": {
        "user_id": "",
        "default_game": None,
    },
}


@dataclass(frozen=True)
class EngineSettings:
    gap_minutes: int = 30
    min_sample_size: int = 5
    significant_drop: float = 0.15
    stale_hours: float = 6
    session_window: int = 50
    recent_sessions: int = 10
    loss_streak_window: int = 20

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]]) -> "EngineSettings":
        cfg = cfg or {}
        sess = cfg.get("sessions", {}) or {}
        an = cfg.get("analytics", {}) or {}
        base = cls()
        return cls(
            gap_minutes=int(sess.get("gap_minutes", base.gap_minutes)),
            min_sample_size=int(an.get("min_sample_size", base.min_sample_size)),
            significant_drop=float(an.get("significant_drop", base.significant_drop)),
            stale_hours=float(an.get("stale_hours", base.stale_hours)),
            session_window=int(an.get("session_window", base.session_window)),
            recent_sessions=int(an.get("recent_sessions", base.recent_sessions)),
            loss_streak_window=int(an.get("loss_streak_window", base.loss_streak_window)),
        )


DEFAULT_SETTINGS = EngineSettings()


def _user_config_dir() -> Path:
    system = platform.system()
    if system == "Windows":
        appdata = os.getenv("APPDATA")
        if appdata:
            return Path(appdata) / APP_DIR_NAME
    elif system == "Darwin":
        return Path.home() / "Library" / "Application Support" / APP_DIR_NAME
    # Linux and others
    xdg = os.getenv("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / APP_DIR_NAME
    return Path.home() / ".config" / APP_DIR_NAME


def _user_data_dir() -> Path:
    system = platform.system()
    if system == "Windows":
        localappdata = os.getenv("LOCALAPPDATA") or os.getenv("APPDATA")
        if localappdata:
            return Path(localappdata) / APP_DIR_NAME
    elif system == "Darwin":
        return Path.home() / "Library" / "Application Support" / APP_DIR_NAME
    xdg = os.getenv("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / APP_DIR_NAME
    return Path.home() / ".local" / "share" / APP_DIR_NAME


def config_path() -> str:
    return str(_user_config_dir() / CONFIG_FILE_NAME)


def db_path() -> str:
    override = os.getenv(DB_PATH_ENV)
    if override:
        return override
    return str(_user_data_dir() / DB_FILE_NAME)


def ensure_paths() -> None:
    _user_config_dir().mkdir(parents=True, exist_ok=True)
    _user_data_dir().mkdir(parents=True, exist_ok=True)
    cfg_file = Path(config_path())
    if not cfg_file.exists():
        cfg_file.write_text(yaml.safe_dump(DEFAULT_CONFIG, sort_keys=False))


def merge_defaults(cfg: Dict[str, Any], defaults: Dict[str, Any] = DEFAULT_CONFIG) -> Dict[str, Any]:
    out = dict(cfg)
    for k, v in defaults.items():
        if isinstance(v, dict):
            out[k] = merge_defaults(out.get(k) or {}, v)
        else:
            out.setdefault(k, v)
    return out


def get_config() -> Dict[str, Any]:
    ensure_paths()
    with open(config_path(), "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}
    return merge_defaults(cfg)


def get_settings() -> EngineSettings:
    return EngineSettings.from_config(get_config())


def open_config_in_editor() -> bool:
    path = config_path()
    try:
        if platform.system() == "Windows":
            os.startfile(path)  # type: ignore[attr-defined]
        elif platform.system() == "Darwin":
            subprocess.run(["open", path], check=False)
        else:
            subprocess.run(["xdg-open", path], check=False)
        return True
    except OSError:
        return False
