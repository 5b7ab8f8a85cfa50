"""MCP-compatible tool schema for AI agents."""

from __future__ import annotations

from ._version import __version__

_JSON = {
    "type": "boolean",
    "description": "Output as JSON for machine parsing",
    "default": False,
}

_SEQUENTIAL = {
    "type": "boolean",
    "description": "Run sequentially instead of parallel",
    "default": False,
}

_REPO_QUERY = {
    "type": "string",
    "description": "Fuzzy query selecting the repository (default: the repository containing the current directory)",
}

_RECORD = {
    "type": "object",
    "properties": {
        "key": {"type": "string"},
        "host": {"type": "string"},
        "owner": {"type": "string"},
        "name": {"type": "string"},
        "local_path": {"type": "string"},
        "remote_url": {"type": ["string", "null"]},
        "created_at": {"type": ["string", "null"]},
        "last_opened_at": {"type": ["string", "null"]},
    },
}


def _tool(name: str, description: str, properties: dict, required: list | None = None, output: dict | None = None) -> dict:
    tool = {
        "name": name,
        "description": description,
        "inputSchema": {
            "type": "object",
            "properties": properties,
            "required": required or [],
        },
    }
    if output is not None:
        tool["outputSchema"] = output
    return tool


def get_tool_schema() -> dict:
    """Generate MCP-compatible tool schema for AI agents."""
    return {
        "name": "pji",
        "version": __version__,
        "description": "Keep git checkouts in a predictable tree <root>/<host>/<owner>/<name>. Registers repositories in a JSON registry, reconciles it against disk (scan), clones what is missing (pull), fuzzy-finds checkouts, opens host pages (home, pull requests, issues) and manages worktrees in <name>.worktrees/<branch>. Config is auto-resolved from $PJI_CONFIG → $XDG_CONFIG_HOME/pji/config.json → ~/.config/pji/config.json.",
        "usage": "pji <command> [args] [options]",
        "tools": [
            _tool(
                "add",
                "Clone a repository into its canonical directory and register it. An existing checkout at that directory is registered without cloning.",
                {
                    "url": {"type": "string", "description": "Git remote URL (ssh, scp-like or https)"},
                    "root": {"type": "string", "description": "Root directory (default: first configured root)"},
                    "json": _JSON,
                },
                required=["url"],
                output={
                    "type": "object",
                    "properties": {
                        "status": {"type": "string", "enum": ["cloned", "registered", "exists"]},
                        "repository": _RECORD,
                    },
                },
            ),
            _tool(
                "remove",
                "Remove a repository from the registry and delete its checkout unless keep_files is set.",
                {
                    "url": {"type": "string", "description": "Git remote URL or host/owner/name"},
                    "keep_files": {
                        "type": "boolean",
                        "description": "Keep the checkout on disk",
                        "default": False,
                    },
                    "yes": {"type": "boolean", "description": "Skip confirmation", "default": False},
                },
                required=["url"],
            ),
            _tool(
                "list",
                "List registered repositories.",
                {
                    "long": {"type": "boolean", "description": "Show all fields", "default": False},
                    "json": _JSON,
                },
                output={
                    "type": "object",
                    "properties": {
                        "count": {"type": "integer"},
                        "repositories": {"type": "array", "items": _RECORD},
                    },
                },
            ),
            _tool(
                "find",
                "Fuzzy-find repositories by name or host/owner/name. Most recently opened wins ties. With pick, mark match N as opened and copy 'cd <dir>' to the clipboard.",
                {
                    "query": {"type": "string", "description": "Characters to match", "default": ""},
                    "limit": {"type": "integer", "description": "Maximum matches", "default": 10},
                    "pick": {"type": "integer", "description": "Index of the match to select"},
                    "json": _JSON,
                },
            ),
            _tool(
                "scan",
                "Walk the configured roots, register every checkout found and report added, updated, unchanged, orphaned, mismatched and failed entries. Duplicate registry entries are merged first.",
                {"json": _JSON, "sequential": _SEQUENTIAL},
                output={
                    "type": "object",
                    "properties": {
                        "added": {"type": "array", "items": _RECORD},
                        "updated": {"type": "array", "items": _RECORD},
                        "unchanged": {"type": "array", "items": _RECORD},
                        "orphaned": {"type": "array", "items": _RECORD},
                        "mismatched": {"type": "array", "items": _RECORD},
                        "failed": {"type": "array", "items": {"type": "object"}},
                        "deduplicated": {"type": "integer"},
                        "summary": {"type": "object"},
                    },
                },
            ),
            _tool(
                "pull",
                "Clone every registered repository whose checkout is missing. Entries without a remote are skipped.",
                {
                    "json": _JSON,
                    "sequential": _SEQUENTIAL,
                    "dry_run": {
                        "type": "boolean",
                        "description": "Show what would be cloned",
                        "default": False,
                    },
                },
            ),
            _tool(
                "clean",
                "Merge duplicate registry entries and drop entries whose checkout is gone. Never deletes directories.",
                {
                    "dry_run": {
                        "type": "boolean",
                        "description": "Report without changing the registry",
                        "default": False,
                    },
                    "json": _JSON,
                },
            ),
            _tool(
                "open",
                "Open a repository page in the browser: home, pr (pull/merge request) or issue, optionally by number. 'repo QUERY' opens the home page of the best fuzzy match.",
                {
                    "target": {
                        "type": "string",
                        "enum": ["repo", "home", "pr", "issue"],
                        "default": "home",
                    },
                    "arg": {
                        "type": "string",
                        "description": "repo: query | home: remote URL | pr/issue: number",
                    },
                    "repo": _REPO_QUERY,
                    "print": {
                        "type": "boolean",
                        "description": "Print the URL instead of opening it",
                        "default": False,
                    },
                },
            ),
            _tool(
                "wt list",
                "List worktrees of a repository, including directories under <name>.worktrees/ that git no longer knows.",
                {"repo": _REPO_QUERY, "json": _JSON},
            ),
            _tool(
                "wt add",
                "Check out a branch in <name>.worktrees/<branch> (slashes become dashes).",
                {
                    "branch": {"type": "string"},
                    "create": {"type": "boolean", "description": "Create the branch", "default": False},
                    "from": {"type": "string", "description": "Start point of a new branch"},
                    "repo": _REPO_QUERY,
                },
                required=["branch"],
            ),
            _tool(
                "wt remove",
                "Remove the worktree of a branch.",
                {
                    "branch": {"type": "string"},
                    "force": {"type": "boolean", "default": False},
                    "repo": _REPO_QUERY,
                },
                required=["branch"],
            ),
            _tool(
                "wt prune",
                "Drop git bookkeeping for worktrees whose directory is gone.",
                {"repo": _REPO_QUERY},
            ),
            _tool(
                "config",
                "Show or edit configuration: show, path, init, add-root, remove-root, set-host HOST --home/--pr/--issue.",
                {"json": _JSON},
            ),
        ],
    }
