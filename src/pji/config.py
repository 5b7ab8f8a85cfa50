"""Configuration: repository roots and host URL templates."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from .errors import PersistenceError
from .urls import BUILTIN_TEMPLATES, HostTemplate

logger = logging.getLogger(__name__)

APP_NAME = "pji"
CONFIG_FILENAME = "config.json"
REGISTRY_FILENAME = "repos.json"
DEFAULT_ROOT = "~/pji"


@dataclass
class Config:
    """Process-wide configuration, read-only during a command."""

    roots: list[Path] = field(default_factory=lambda: [expand_root(DEFAULT_ROOT)])
    host_templates: dict[str, HostTemplate] = field(default_factory=dict)

    @property
    def default_root(self) -> Path:
        if not self.roots:
            raise PersistenceError("config", "no roots configured (run: pji config add-root PATH)")
        return self.roots[0]

    def root_for(self, path: Path) -> Path | None:
        """Return the configured root containing ``path``."""
        for root in self.roots:
            if path == root or root in path.parents:
                return root
        return None

    def to_dict(self) -> dict:
        return {
            "roots": [str(r) for r in self.roots],
            "host_templates": {host: t.to_dict() for host, t in self.host_templates.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> Config:
        roots = [expand_root(r) for r in data.get("roots", [])]
        templates: dict[str, HostTemplate] = {}
        for host, raw in (data.get("host_templates") or {}).items():
            host = host.lower()
            templates[host] = HostTemplate.from_dict(raw, base=BUILTIN_TEMPLATES.get(host))
        return cls(roots=roots, host_templates=templates)


def expand_root(value: str | Path) -> Path:
    """Expand environment variables first, then tilde."""
    expanded = os.path.expandvars(str(value))
    return Path(expanded).expanduser().absolute()


def resolve_config_path() -> Path:
    """Auto-resolve the config file location.

    Priority order:
    1. $PJI_CONFIG environment variable
    2. $XDG_CONFIG_HOME/pji/config.json
    3. ~/.config/pji/config.json
    """
    env_config = os.environ.get("PJI_CONFIG")
    if env_config:
        return Path(env_config).expanduser()

    xdg_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_home:
        return Path(xdg_home).expanduser() / APP_NAME / CONFIG_FILENAME

    return Path.home() / ".config" / APP_NAME / CONFIG_FILENAME


def resolve_registry_path(config_path: Path | None = None) -> Path:
    """Registry file: $PJI_REGISTRY, else next to the config file."""
    env_registry = os.environ.get("PJI_REGISTRY")
    if env_registry:
        return Path(env_registry).expanduser()
    config_path = config_path or resolve_config_path()
    return config_path.parent / REGISTRY_FILENAME


def load_config(path: Path | None = None) -> Config:
    """Load the config file; a missing file gives the default config.

    Raises:
        PersistenceError: the file exists but cannot be read or parsed.
    """
    path = path or resolve_config_path()
    if not path.exists():
        logger.debug("no config at %s, using defaults", path)
        return Config()
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise PersistenceError(path, str(e)) from e
    if not isinstance(data, dict):
        raise PersistenceError(path, "expected a JSON object")
    try:
        return Config.from_dict(data)
    except (TypeError, ValueError, AttributeError) as e:
        raise PersistenceError(path, f"invalid config: {e}") from e


def save_config(config: Config, path: Path | None = None) -> Path:
    """Write the config file, creating its directory."""
    path = path or resolve_config_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(config.to_dict(), f, indent=2)
            f.write("\n")
    except OSError as e:
        raise PersistenceError(path, str(e)) from e
    return path
