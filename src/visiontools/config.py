from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

_log = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.va.landing.ai"

CONFIG_PATH = Path.home() / ".config" / "visiontools" / "config.yml"

# Relative output directories ("./out") resolve against the package directory, not the cwd.
_INSTALL_DIR = Path(__file__).resolve().parent

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

# env var -> config field
_ENV_OVERRIDES = {
    "VISION_AGENT_API_KEY": "api_key",
    "VISION_TOOLS_API_URL": "base_url",
    "OUTPUT_DIRECTORY": "output_directory",
    "IMAGE_DISPLAY_ENABLED": "image_display_enabled",
    "VISION_TOOLS_CATALOG": "catalog_path",
    "VISION_TOOLS_HTTP_TIMEOUT": "http_timeout",
    "VISION_TOOLS_LOG_LEVEL": "log_level",
}


@dataclass(frozen=True)
class ServerConfig:
    api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    output_directory: str | None = None   # where output.png lands; None = don't persist
    image_display_enabled: bool = False   # echo returned images inline to the host
    catalog_path: str | None = None       # None = packaged catalog.yaml
    http_timeout: float | None = None     # local socket timeout; None waits for the API
    log_level: str = "INFO"

    @property
    def authorization(self) -> str | None:
        if not self.api_key:
            return None
        return f"Basic {self.api_key}"


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _validate(cfg: dict[str, Any]) -> dict[str, Any]:
    defaults = ServerConfig().__dict__.copy()
    merged = {**defaults, **{k: v for k, v in cfg.items() if k in defaults}}
    merged["api_key"] = str(merged.get("api_key") or "").strip()
    if not isinstance(merged.get("base_url"), str) or not merged["base_url"].strip():
        merged["base_url"] = defaults["base_url"]
    merged["base_url"] = merged["base_url"].strip().rstrip("/")
    merged["output_directory"] = _optional_str(merged.get("output_directory"))
    merged["image_display_enabled"] = _as_bool(merged.get("image_display_enabled"))
    merged["catalog_path"] = _optional_str(merged.get("catalog_path"))
    raw_timeout = merged.get("http_timeout")
    try:
        timeout = float(raw_timeout) if raw_timeout not in (None, "") else None
    except (TypeError, ValueError):
        timeout = None
    merged["http_timeout"] = timeout if timeout is None or timeout > 0 else None
    level = str(merged.get("log_level") or "").strip().upper()
    merged["log_level"] = level if level in _LOG_LEVELS else defaults["log_level"]
    return merged


def load_config(path: Path = CONFIG_PATH, env: Mapping[str, str] | None = None) -> ServerConfig:
    """Build the process configuration: defaults < YAML file < environment."""
    env = os.environ if env is None else env
    raw: dict[str, Any] = {}
    if path.exists():
        try:
            loaded = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            _log.warning("Ignoring unreadable config %s: %s", path, exc)
            loaded = {}
        if isinstance(loaded, dict):
            raw.update(loaded)
    for var, key in _ENV_OVERRIDES.items():
        if var in env:
            raw[key] = env[var]
    return ServerConfig(**_validate(raw))


def resolve_output_directory(raw: str | None) -> Path | None:
    if not raw:
        return None
    if raw.startswith("~"):
        path = Path.home() / raw[1:].lstrip("/\\")
    elif raw.startswith("."):
        path = _INSTALL_DIR / raw
    else:
        path = Path(raw)
    return path.resolve()


def ensure_output_directory(config: ServerConfig) -> ServerConfig:
    """Create the output directory once at start-up; returns config with the resolved path."""
    directory = resolve_output_directory(config.output_directory)
    if directory is None:
        return config
    directory.mkdir(parents=True, exist_ok=True)
    _log.info("Image output directory: %s", directory)
    return replace(config, output_directory=str(directory))


def configure_logging(level: str = "INFO") -> None:
    # stderr only: stdout carries the JSON-RPC stream.
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
