"""Command line interface."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from enum import StrEnum
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn

from ._version import __version__
from .config import (
    Config,
    expand_root,
    load_config,
    resolve_config_path,
    resolve_registry_path,
    save_config,
)
from .core import Puller, Scanner, add_repository, clean_registry, remove_repository
from .errors import NotFoundError, ParseError, PersistenceError, PjiError, ResolveError
from .finder import find
from .formatters import OutputFormatter
from .git import GitExecutor, GitOperations
from .identity import find_checkout, main_repo_for, parse_path, parse_remote, to_remote_key
from .launchers import BrowserLauncher, Clipboard
from .registry import Registry, RegistryStore, RepoRecord
from .schema import get_tool_schema
from .urls import BUILTIN_TEMPLATES, HostTemplate, PageKind, UrlResolver
from .worktrees import WorktreeManager

logger = logging.getLogger(__name__)

MAX_WORKERS = 8

app = typer.Typer(
    name="pji",
    help="A tree structure for your git projects.",
    no_args_is_help=True,
)
config_app = typer.Typer(help="Show and edit the pji configuration.")
wt_app = typer.Typer(help="Manage git worktrees of a repository.", no_args_is_help=True)
app.add_typer(config_app, name="config")
app.add_typer(wt_app, name="wt")


# =============================================================================
# Capabilities (replaced in tests)
# =============================================================================


def get_git() -> GitExecutor:
    return GitOperations()


def get_browser() -> BrowserLauncher:
    return BrowserLauncher()


def get_clipboard() -> Clipboard:
    return Clipboard()


# =============================================================================
# Helpers
# =============================================================================


def configure_logging(verbose: bool) -> None:
    """Route log records to stderr through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def get_console_and_formatter(json_output: bool) -> tuple[Console, OutputFormatter]:
    """Create console and formatter."""
    console = Console(force_terminal=not json_output)
    formatter = OutputFormatter(console, use_json=json_output)
    return console, formatter


@contextmanager
def handle_errors() -> Iterator[None]:
    """Print a pji error and exit non-zero."""
    try:
        yield
    except PjiError as e:
        Console(stderr=True).print(f"[red]Error: {escape(str(e))}[/]")
        raise typer.Exit(1) from e


@contextmanager
def spinner(console: Console, message: str, enabled: bool = True) -> Iterator[None]:
    if not enabled:
        yield
        return
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task(message, total=None)
        yield


def open_store() -> tuple[Config, Path, RegistryStore]:
    """Load the config and locate the registry file."""
    config_path = resolve_config_path()
    config = load_config(config_path)
    return config, config_path, RegistryStore(resolve_registry_path(config_path))


def load_registry(store: RegistryStore, mutating: bool) -> tuple[Registry, bool]:
    """Load the registry.

    Read-only commands continue with an empty registry when the file is
    unreadable; the second value tells whether it is safe to save.
    """
    try:
        return store.load(), True
    except PersistenceError as e:
        if mutating:
            raise
        Console(stderr=True).print(
            f"[yellow]Warning: {escape(str(e))}; continuing with an empty registry[/]"
        )
        return Registry(), False


def save_quietly(store: RegistryStore, registry: Registry) -> None:
    """Persist a side effect of a read-only command, warning on failure."""
    try:
        store.save(registry)
    except PersistenceError as e:
        logger.warning("%s", e)


def copy_cd(console: Console, path: Path) -> None:
    text = f"cd {path}"
    if get_clipboard().copy(text):
        console.print(f"[dim]Copied \"{escape(text)}\" to clipboard[/]")


def best_match(registry: Registry, query: str) -> RepoRecord:
    results = find(registry.records(), query, limit=1)
    if not results:
        raise NotFoundError(f"No repository matches '{query}'")
    return results[0][0]


def current_repository(
    registry: Registry,
    config: Config,
    repo_query: str | None = None,
    require_registered: bool = True,
) -> RepoRecord:
    """The repository selected by ``--repo``, else the one holding the cwd.

    A linked worktree maps to its main repository.
    """
    if repo_query:
        return best_match(registry, repo_query)

    cwd = Path.cwd()
    record = registry.find_by_path(cwd)
    if record is not None:
        return record

    checkout = find_checkout(cwd)
    if checkout is None:
        raise NotFoundError("Not inside a git repository (use --repo QUERY)")
    main = main_repo_for(checkout) or checkout
    record = registry.find_by_path(main)
    if record is not None:
        return record
    if require_registered:
        raise NotFoundError(f"{main} is not registered (run: pji scan)")

    remote_url = get_git().get_remote_url(main)
    if remote_url:
        return RepoRecord(identity=parse_remote(remote_url), local_path=main, remote_url=remote_url)
    root = config.root_for(main)
    if root is None:
        raise NotFoundError(f"{main} has no remote and is outside the configured roots")
    return RepoRecord(identity=parse_path(root, main), local_path=main)


# =============================================================================
# Main callback
# =============================================================================


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"pji {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    schema: bool = typer.Option(
        False,
        "--schema",
        help="Output MCP-compatible tool schema for AI agents",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show debug logging",
    ),
):
    """pji: a tree structure for your git projects."""
    configure_logging(verbose)
    if schema:
        print(json.dumps(get_tool_schema(), indent=2))
        raise typer.Exit()


# =============================================================================
# Registry commands
# =============================================================================


@app.command()
def add(
    url: str = typer.Argument(..., help="Git remote URL to clone"),
    root: Path = typer.Option(
        None,
        "--root",
        "-r",
        help="Root directory to clone into (default: first configured root)",
    ),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Clone a repository into <root>/<host>/<owner>/<name> and register it."""
    console, formatter = get_console_and_formatter(json_output)
    with handle_errors():
        config, _, store = open_store()
        registry, _ = load_registry(store, mutating=True)
        key = to_remote_key(url)

        existing = registry.get(key)
        if existing is not None:
            if json_output:
                formatter.print_json({"status": "exists", "repository": existing.to_dict()})
            else:
                console.print(
                    f"[yellow]⚠ Repository {escape(key)} already exists at "
                    f"{escape(str(existing.local_path))}[/]"
                )
            return

        with spinner(console, f"Cloning {key}...", enabled=not json_output):
            record, cloned = add_repository(
                registry, config, get_git(), url, root=expand_root(root) if root else None
            )
        store.save(registry)

    if json_output:
        formatter.print_json({"status": "cloned" if cloned else "registered", "repository": record.to_dict()})
        return
    verb = "Cloned" if cloned else "Registered existing checkout of"
    console.print(f"[green]✓ {verb} {escape(key)}[/] → {escape(str(record.local_path))}")
    copy_cd(console, record.local_path)


@app.command()
def remove(
    url: str = typer.Argument(..., help="Git remote URL (or host/owner/name) to remove"),
    keep_files: bool = typer.Option(
        False,
        "--keep-files",
        "-k",
        help="Only drop the registry entry, keep the checkout on disk",
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Remove a repository from the registry and delete its checkout."""
    console = Console()
    with handle_errors():
        _, _, store = open_store()
        registry, _ = load_registry(store, mutating=True)
        key = to_remote_key(url)
        record = registry.get(key)
        if record is None:
            raise NotFoundError(f"Repository {key} is not registered")

        if not yes:
            action = "unregister" if keep_files else f"delete {record.local_path} and unregister"
            if not typer.confirm(f"Are you sure you want to {action} {key}?"):
                raise typer.Exit()

        remove_repository(registry, key, delete_files=not keep_files)
        store.save(registry)
    console.print(f"[green]✓ Removed {escape(key)}[/]")


@app.command(name="list")
def list_repos(
    long: bool = typer.Option(False, "--long", "-l", help="Show all fields"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """List registered repositories."""
    _, formatter = get_console_and_formatter(json_output)
    with handle_errors():
        _, _, store = open_store()
        registry, _ = load_registry(store, mutating=False)
    formatter.print_repo_list(registry.records(), long=long)


@app.command(name="find")
def find_repo(
    query: str = typer.Argument("", help="Characters to fuzzy-match against repository names"),
    limit: int = typer.Option(10, "--limit", "-n", help="Maximum number of matches"),
    pick: int = typer.Option(
        None,
        "--pick",
        "-p",
        help="Select match number N: mark it opened and copy 'cd <dir>'",
    ),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Fuzzy-find a repository (most recently opened first)."""
    console, formatter = get_console_and_formatter(json_output)
    with handle_errors():
        _, _, store = open_store()
        registry, writable = load_registry(store, mutating=False)
        results = find(registry.records(), query, limit=limit)

        if pick is None:
            formatter.print_find_results(results, query)
            return
        if not 0 <= pick < len(results):
            raise NotFoundError(f"No match number {pick} ({len(results)} matches)")

        chosen = registry.touch(results[pick][0].key) or results[pick][0]
        if writable:
            save_quietly(store, registry)

    if json_output:
        formatter.print_json({"query": query, "selected": chosen.to_dict()})
        return
    console.print(f"You chose: [cyan]{escape(str(chosen.local_path))}[/]")
    copy_cd(console, chosen.local_path)


@app.command()
def scan(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
    sequential: bool = typer.Option(
        False,
        "--sequential",
        "-s",
        help="Run sequentially instead of parallel",
    ),
):
    """Scan the roots for repositories and update the registry."""
    console, formatter = get_console_and_formatter(json_output)
    with handle_errors():
        config, _, store = open_store()
        registry, _ = load_registry(store, mutating=True)
        scanner = Scanner(get_git(), max_workers=MAX_WORKERS, sequential=sequential)
        with spinner(console, "Scanning repositories...", enabled=not json_output):
            report = scanner.scan(config, registry)
        store.save(registry)

    formatter.print_scan_report(report)
    if report.all_failed:
        raise typer.Exit(1)


@app.command()
def pull(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
    sequential: bool = typer.Option(
        False,
        "--sequential",
        "-s",
        help="Run sequentially instead of parallel",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Show what would be cloned without cloning",
    ),
):
    """Clone every registered repository missing on disk."""
    console, formatter = get_console_and_formatter(json_output)
    with handle_errors():
        _, _, store = open_store()
        registry, _ = load_registry(store, mutating=True)
        puller = Puller(get_git(), max_workers=MAX_WORKERS, sequential=sequential)
        with spinner(console, "Cloning missing repositories...", enabled=not json_output):
            report = puller.pull(registry, dry_run=dry_run)

    formatter.print_pull_report(report)
    if report.all_failed:
        raise typer.Exit(1)


@app.command()
def clean(
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Show what would be removed without changing the registry",
    ),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Merge duplicate entries and drop entries whose checkout is gone."""
    _, formatter = get_console_and_formatter(json_output)
    with handle_errors():
        _, _, store = open_store()
        registry, _ = load_registry(store, mutating=True)
        report = clean_registry(registry, dry_run=dry_run)
        if not dry_run:
            store.save(registry)
    formatter.print_clean_report(report, dry_run=dry_run)


class OpenTarget(StrEnum):
    REPO = "repo"
    HOME = "home"
    PR = "pr"
    ISSUE = "issue"


def _parse_number(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value.lstrip("#"))
    except ValueError:
        raise ParseError(value, "expected a number") from None


@app.command(name="open")
def open_page(
    target: OpenTarget = typer.Argument(OpenTarget.HOME, help="Page to open"),
    arg: str = typer.Argument(
        None,
        help="repo: search query | home: remote URL | pr/issue: number",
    ),
    repo: str = typer.Option(None, "--repo", help="Repository query (default: current directory)"),
    print_only: bool = typer.Option(False, "--print", "-p", help="Print the URL instead of opening it"),
):
    """Open a repository page (home, pull requests, issues) in the browser."""
    console = Console()
    with handle_errors():
        config, _, store = open_store()
        registry, writable = load_registry(store, mutating=False)
        resolver = UrlResolver(config.host_templates)

        record: RepoRecord | None = None
        if target == OpenTarget.HOME and arg:
            identity = parse_remote(arg)
            url = resolver.resolve(identity, PageKind.HOME, remote_url=arg)
        else:
            query = arg if target == OpenTarget.REPO else repo
            if target == OpenTarget.REPO and not arg:
                raise ParseError("", "open repo needs a search query")
            record = current_repository(registry, config, query, require_registered=False)
            if target in (OpenTarget.REPO, OpenTarget.HOME):
                kind, number = PageKind.HOME, None
            elif target == OpenTarget.PR:
                kind, number = PageKind.PULL_REQUEST, _parse_number(arg)
            else:
                kind, number = PageKind.ISSUE, _parse_number(arg)
            if not record.remote_url:
                raise ResolveError(f"Repository {record.key} has no remote URL")
            url = resolver.resolve(record.identity, kind, number, remote_url=record.remote_url)

        if record is not None and record.key in registry:
            registry.touch(record.key)
            if writable:
                save_quietly(store, registry)

    if print_only:
        print(url)
        return
    console.print(f"Opening [link={url}]{escape(url)}[/link]")
    get_browser().open(url)


# =============================================================================
# Config commands
# =============================================================================


@config_app.callback(invoke_without_command=True)
def config_main(ctx: typer.Context):
    """Show and edit the pji configuration."""
    if ctx.invoked_subcommand is None:
        config_show(json_output=False)


@config_app.command(name="show")
def config_show(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show the effective configuration."""
    _, formatter = get_console_and_formatter(json_output)
    with handle_errors():
        config_path = resolve_config_path()
        config = load_config(config_path)
    formatter.print_config(config, config_path, resolve_registry_path(config_path))


@config_app.command(name="path")
def config_path_cmd():
    """Print the config file location."""
    print(resolve_config_path())


@config_app.command(name="init")
def config_init(
    root: Path = typer.Option(None, "--root", "-r", help="Root directory for repositories"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing config"),
):
    """Create the config file with a root directory."""
    console = Console()
    with handle_errors():
        path = resolve_config_path()
        if path.exists() and not force:
            if not typer.confirm(f"Config file {path} already exists, overwrite it?"):
                raise typer.Exit()
        if root is None:
            root = Path(typer.prompt("Root directory for repositories", default=str(Config().default_root)))
        root_path = expand_root(root)
        if not root_path.exists():
            console.print(f"{escape(str(root_path))} does not exist, creating...")
            root_path.mkdir(parents=True)
        save_config(Config(roots=[root_path]), path)
    console.print(f"[green]✓ Wrote {escape(str(path))}[/]")


@config_app.command(name="add-root")
def config_add_root(
    root: Path = typer.Argument(..., help="Root directory to add"),
):
    """Add a root directory."""
    console = Console()
    with handle_errors():
        path = resolve_config_path()
        config = load_config(path)
        root_path = expand_root(root)
        if root_path in config.roots:
            console.print(f"[yellow]⚠ {escape(str(root_path))} is already a root[/]")
            return
        config.roots.append(root_path)
        save_config(config, path)
    console.print(f"[green]✓ Added root {escape(str(root_path))}[/]")


@config_app.command(name="remove-root")
def config_remove_root(
    root: Path = typer.Argument(..., help="Root directory to remove"),
):
    """Remove a root directory (the directory itself is kept)."""
    console = Console()
    with handle_errors():
        path = resolve_config_path()
        config = load_config(path)
        root_path = expand_root(root)
        if root_path not in config.roots:
            raise NotFoundError(f"{root_path} is not a configured root")
        config.roots.remove(root_path)
        save_config(config, path)
    console.print(f"[green]✓ Removed root {escape(str(root_path))}[/]")


@config_app.command(name="set-host")
def config_set_host(
    host: str = typer.Argument(..., help="Host name, e.g. git.example.com"),
    home: str = typer.Option(None, "--home", help="Home URL template, e.g. https://{host}/{owner}/{name}"),
    pr: str = typer.Option(None, "--pr", help="Pull request URL template, e.g. {home}/pull/{number}"),
    issue: str = typer.Option(None, "--issue", help="Issue URL template, e.g. {home}/issues/{number}"),
):
    """Register URL templates for a host."""
    console = Console()
    with handle_errors():
        fields = {k: v for k, v in (("home", home), ("pr", pr), ("issue", issue)) if v}
        if not fields:
            raise ParseError(host, "give at least one of --home, --pr, --issue")
        path = resolve_config_path()
        config = load_config(path)
        host = host.lower()
        base = config.host_templates.get(host) or BUILTIN_TEMPLATES.get(host)
        try:
            config.host_templates[host] = HostTemplate.from_dict(fields, base=base)
        except ValueError as e:
            raise ResolveError(f"Invalid URL template for {host}: {e}") from e
        save_config(config, path)
    console.print(f"[green]✓ Saved templates for {escape(host)}[/]")


# =============================================================================
# Worktree commands
# =============================================================================


def _worktree_context(repo: str | None) -> tuple[WorktreeManager, RepoRecord]:
    config, _, store = open_store()
    registry, _ = load_registry(store, mutating=False)
    record = current_repository(registry, config, repo)
    return WorktreeManager(registry, get_git()), record


@wt_app.command(name="list")
def wt_list(
    repo: str = typer.Option(None, "--repo", help="Repository query (default: current directory)"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """List worktrees, including stale ones git no longer knows."""
    _, formatter = get_console_and_formatter(json_output)
    with handle_errors():
        manager, record = _worktree_context(repo)
        worktrees = manager.list(record.identity)
    formatter.print_worktree_list(worktrees, str(record.identity))


@wt_app.command(name="add")
def wt_add(
    branch: str = typer.Argument(..., help="Branch to check out"),
    create: bool = typer.Option(False, "--create", "-b", help="Create the branch"),
    start_point: str = typer.Option(None, "--from", help="Start point of a new branch"),
    repo: str = typer.Option(None, "--repo", help="Repository query (default: current directory)"),
):
    """Check out a branch in a new worktree next to the repository."""
    console = Console()
    with handle_errors():
        manager, record = _worktree_context(repo)
        worktree = manager.add(record.identity, branch, create_branch=create, start_point=start_point)
    console.print(f"[green]✓ Created worktree[/] {escape(str(worktree.path))}")
    copy_cd(console, worktree.path)


@wt_app.command(name="remove")
def wt_remove(
    branch: str = typer.Argument(..., help="Branch whose worktree to remove"),
    force: bool = typer.Option(False, "--force", "-f", help="Remove even with local changes"),
    repo: str = typer.Option(None, "--repo", help="Repository query (default: current directory)"),
):
    """Remove the worktree of a branch."""
    console = Console()
    with handle_errors():
        manager, record = _worktree_context(repo)
        worktree = manager.remove(record.identity, branch, force=force)
    console.print(f"[green]✓ Removed worktree[/] {escape(str(worktree.path))}")


@wt_app.command(name="prune")
def wt_prune(
    repo: str = typer.Option(None, "--repo", help="Repository query (default: current directory)"),
):
    """Drop git bookkeeping for worktrees whose directory is gone."""
    console = Console()
    with handle_errors():
        manager, record = _worktree_context(repo)
        removed = manager.prune(record.identity)
    console.print(f"[green]✓ Pruned {removed} stale worktree(s)[/] in {escape(str(record.identity))}")
