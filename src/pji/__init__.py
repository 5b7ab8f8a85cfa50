"""pji: a tree structure for your git projects."""

# Guard against deleted CWD (e.g. directory removed by another process).
# rich crashes on import if os.getcwd() fails, so recover before any imports.
import os

try:
    os.getcwd()
except (OSError, PermissionError):
    os.chdir(os.path.expanduser("~"))

from ._version import __version__
from .cli import app
from .config import Config, load_config, save_config
from .core import (
    CleanReport,
    OperationResult,
    Puller,
    PullReport,
    Scanner,
    ScanReport,
    add_repository,
    clean_registry,
    remove_repository,
)
from .errors import PjiError
from .finder import find
from .formatters import OutputFormatter
from .git import GitExecutor, GitOperations
from .identity import RepoIdentity, parse_path, parse_remote, to_path, to_remote_key
from .registry import Registry, RegistryStore, RepoRecord, UpsertResult
from .schema import get_tool_schema
from .urls import HostTemplate, PageKind, UrlResolver
from .worktrees import WorktreeManager, WorktreeRecord

__all__ = [
    # Version
    "__version__",
    # CLI
    "app",
    # Models
    "CleanReport",
    "Config",
    "HostTemplate",
    "OperationResult",
    "PageKind",
    "PullReport",
    "RepoIdentity",
    "RepoRecord",
    "ScanReport",
    "UpsertResult",
    "WorktreeRecord",
    # Operations
    "GitExecutor",
    "GitOperations",
    "Puller",
    "Registry",
    "RegistryStore",
    "Scanner",
    "UrlResolver",
    "WorktreeManager",
    # Functions
    "add_repository",
    "clean_registry",
    "find",
    "get_tool_schema",
    "load_config",
    "parse_path",
    "parse_remote",
    "remove_repository",
    "save_config",
    "to_path",
    "to_remote_key",
    # Errors
    "PjiError",
    # Formatters
    "OutputFormatter",
]
