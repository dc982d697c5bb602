# alienbridge/config_loader.py
from __future__ import annotations
"""
Configuration loader for the Alien reader bridge.

Single source of truth:
    config/config.yaml   (or any path passed with --config)

Design notes
------------
- One YAML file, root must be a mapping. Missing or broken files raise a
  ConfigError that prints absolute paths for quick fixes.
- Unknown keys are fine; we pass the full dict through untouched.
- Helpers return {} or sensible defaults when sections are absent.
- Nothing is loaded at import time; call load_config() (the CLI does) and
  hand the dict to the accessors.

Public API
----------
- load_config(path: str|Path|None = None) -> dict
- get_reader_cfg(cfg) -> ReaderConfig
- get_listener_cfg(cfg) -> ListenerConfig
- get_sink_cfg(cfg) -> dict
- get_log_level(cfg, default: str = "INFO") -> str
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from alienbridge.errors import ConfigError

# ---------- Files & roots ----------
PROJECT_ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR   = PROJECT_ROOT / "config"
DEFAULT_CFG  = CONFIG_DIR / "config.yaml"

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 20000
DEFAULT_USER = "alien"
DEFAULT_PASSWORD = "password"
DEFAULT_NOTIFY_PORT = 20001


def _safe_float(x) -> Optional[float]:
    if x is None or x == "":
        return None
    try:
        return float(x)
    except (TypeError, ValueError):
        raise ConfigError(f"Expected a number of seconds, got {x!r}") from None


def _port(x, default: int) -> int:
    # 0 is a real value (ephemeral port); only a missing key falls back
    if x is None or x == "":
        return default
    try:
        return int(x)
    except (TypeError, ValueError):
        raise ConfigError(f"Expected a port number, got {x!r}") from None


# ---------- config snapshots ----------

@dataclass
class ReaderConfig:
    """Everything the control channel and setup sequence need to know about one reader."""
    address: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    username: str = DEFAULT_USER
    password: str = DEFAULT_PASSWORD
    name: str = "Alien"
    antennas: Tuple[str, ...] = ("0",)

    # hardening: None = wait forever (reader behaviour before timeouts existed)
    login_timeout_s: Optional[float] = None
    command_timeout_s: Optional[float] = None

    # where the reader should push notifications
    notify_port: int = DEFAULT_NOTIFY_PORT
    notify_host: Optional[str] = None  # None -> local address of the control socket

    # setup knobs
    auto_stop_timer_ms: int = 500
    timestamp_format: bool = True

    encoding: str = "utf-8"

    @classmethod
    def from_dict(cls, rd: Optional[Dict[str, Any]]) -> "ReaderConfig":
        rd = rd or {}
        timeouts = rd.get("timeouts", {}) or {}
        setup = rd.get("setup", {}) or {}
        antennas = rd.get("antennas")
        if antennas is None:
            antennas = ["0"]
        elif isinstance(antennas, (str, int)):
            antennas = str(antennas).split()

        return cls(
            address=str(rd.get("address") or DEFAULT_HOST),
            port=_port(rd.get("port"), DEFAULT_PORT),
            username=str(rd.get("username") or DEFAULT_USER),
            password=str(rd.get("password") or DEFAULT_PASSWORD),
            name=str(rd.get("name") or "Alien"),
            antennas=tuple(str(a) for a in antennas),

            login_timeout_s=_safe_float(timeouts.get("login_s")),
            command_timeout_s=_safe_float(timeouts.get("command_s")),

            notify_port=_port(rd.get("notify_port"), DEFAULT_NOTIFY_PORT),
            notify_host=str(rd["notify_host"]) if rd.get("notify_host") else None,

            auto_stop_timer_ms=int(setup.get("auto_stop_timer_ms", 500)),
            timestamp_format=bool(setup.get("timestamp_format", True)),

            encoding=str(rd.get("encoding") or "utf-8"),
        )


@dataclass
class ListenerConfig:
    host: str = "0.0.0.0"
    port: int = DEFAULT_NOTIFY_PORT
    read_size: int = 4096
    progress_every: int = 800
    encoding: str = "utf-8"

    @classmethod
    def from_dict(cls, nd: Optional[Dict[str, Any]], default_port: int = DEFAULT_NOTIFY_PORT) -> "ListenerConfig":
        nd = nd or {}
        return cls(
            host=str(nd.get("host") or "0.0.0.0"),
            port=_port(nd.get("port"), default_port),
            read_size=int(nd.get("read_size", 4096)),
            progress_every=int(nd.get("progress_every", 800)),
            encoding=str(nd.get("encoding") or "utf-8"),
        )


# ---------- I/O helpers ----------
def _load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML mapping from `path`. Human-friendly errors, strict root type."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(
            f"Missing configuration file: {path}\n"
            f"Expected a single-file config with a 'reader:' section.\n"
            f"Repo root: {PROJECT_ROOT}"
        ) from None
    except Exception as ex:
        raise ConfigError(f"Failed to read {path}: {type(ex).__name__}: {ex}") from ex

    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as ex:
        raise ConfigError(f"Failed to parse YAML {path}: {type(ex).__name__}: {ex}") from ex

    if not isinstance(data, dict):
        raise ConfigError(f"Root of {path} must be a mapping/object, not {type(data).__name__}")
    return data


def _resolve_path(p: str | os.PathLike[str]) -> Path:
    """Return absolute path; resolve relative to repo root."""
    pth = Path(p)
    return pth if pth.is_absolute() else (PROJECT_ROOT / pth).resolve()


# ---------- Loader ----------
def load_config(path: str | os.PathLike[str] | None = None) -> Dict[str, Any]:
    """
    Load a single YAML file (default: config/config.yaml), check the sections
    we read are mappings, and return the raw dict (unmodified).
    """
    cfg_path = _resolve_path(path) if path else DEFAULT_CFG
    cfg = _load_yaml(cfg_path)

    for section in ("reader", "notify", "sink", "log"):
        val = cfg.get(section)
        if val is not None and not isinstance(val, dict):
            raise ConfigError(
                f"CONFIG section '{section}' must be a mapping in {cfg_path}, "
                f"not {type(val).__name__}"
            )
    return cfg


# ---------- Accessors ----------
def get_reader_cfg(cfg: Optional[Dict[str, Any]]) -> ReaderConfig:
    """Return the reader snapshot; every field falls back to its default."""
    return ReaderConfig.from_dict((cfg or {}).get("reader"))


def get_listener_cfg(cfg: Optional[Dict[str, Any]]) -> ListenerConfig:
    """
    Return the notification listener snapshot. The listen port defaults to the
    reader's notify_port so both sides agree unless explicitly split.
    """
    reader = get_reader_cfg(cfg)
    return ListenerConfig.from_dict((cfg or {}).get("notify"), default_port=reader.notify_port)


def get_sink_cfg(cfg: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Return sink configuration block or {} (mode/http/etc.)."""
    return (cfg or {}).get("sink", {}) or {}


def get_log_level(cfg: Optional[Dict[str, Any]], default: str = "INFO") -> str:
    """Return log level as 'INFO'/'DEBUG', etc."""
    lvl = ((cfg or {}).get("log", {}) or {}).get("level", default)
    # normalize common variants
    return str(lvl).upper()
# ---------- End of config_loader.py ----------
