"""Host-aware browser URLs for repositories."""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from enum import StrEnum
from string import Formatter

from .errors import ParseError, ResolveError, UnknownHostError
from .identity import RepoIdentity, https_url, parse_remote


class PageKind(StrEnum):
    """Browser page of a repository."""

    HOME = "home"
    PULL_REQUEST = "pr"
    ISSUE = "issue"


@dataclass(frozen=True)
class HostTemplate:
    """URL templates of one host.

    Placeholders: ``{host}``, ``{owner}``, ``{name}``, ``{home}`` and, in
    ``pr``/``issue``, ``{number}``. The listing page (no number) is the
    template with its ``/{number}`` suffix removed unless ``pr_list`` or
    ``issue_list`` is given.
    """

    home: str = "https://{host}/{owner}/{name}"
    pr: str = "{home}/pull/{number}"
    issue: str = "{home}/issues/{number}"
    pr_list: str | None = None
    issue_list: str | None = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict, base: HostTemplate | None = None) -> HostTemplate:
        """Build a template, inheriting omitted fields from ``base``."""
        fields = {k: data[k] for k in ("home", "pr", "issue", "pr_list", "issue_list") if k in data}
        unknown = set(data) - set(fields)
        if unknown:
            raise ValueError(f"unknown template fields: {', '.join(sorted(unknown))}")
        for key, pattern in fields.items():
            if pattern is not None:
                check_placeholders(key, pattern)
        if base is None:
            return cls(**fields)
        if ("pr" in fields) and "pr_list" not in fields:
            fields["pr_list"] = None
        if ("issue" in fields) and "issue_list" not in fields:
            fields["issue_list"] = None
        return replace(base, **fields)


PLACEHOLDERS: dict[str, frozenset[str]] = {
    "home": frozenset({"host", "owner", "name"}),
    "pr": frozenset({"host", "owner", "name", "home", "number"}),
    "issue": frozenset({"host", "owner", "name", "home", "number"}),
    "pr_list": frozenset({"host", "owner", "name", "home"}),
    "issue_list": frozenset({"host", "owner", "name", "home"}),
}


def check_placeholders(key: str, pattern: str) -> None:
    """Reject a template whose placeholders cannot be filled.

    Raises:
        ValueError: malformed braces or an unknown placeholder.
    """
    if not isinstance(pattern, str):
        raise ValueError(f"{key} template must be a string")
    try:
        parsed = list(Formatter().parse(pattern))
    except ValueError as e:
        raise ValueError(f"{key} template {pattern!r}: {e}") from e
    allowed = PLACEHOLDERS[key]
    for _, field_name, _, _ in parsed:
        if field_name is None:
            continue
        if field_name not in allowed:
            raise ValueError(
                f"{key} template {pattern!r}: unknown placeholder {{{field_name}}}"
                f" (allowed: {', '.join(sorted(allowed))})"
            )


GITHUB = HostTemplate(pr_list="{home}/pulls")
GITLAB = HostTemplate(
    pr="{home}/-/merge_requests/{number}",
    issue="{home}/-/issues/{number}",
)
BITBUCKET = HostTemplate(pr="{home}/pull-requests/{number}")
GITEA = HostTemplate(pr="{home}/pulls/{number}")

BUILTIN_TEMPLATES: dict[str, HostTemplate] = {
    "github.com": GITHUB,
    "gitlab.com": GITLAB,
    "bitbucket.org": BITBUCKET,
    "codeberg.org": GITEA,
    "gitee.com": GITEA,
}

# Self-hosted instances usually carry the product name in the host
HOST_FAMILIES: tuple[tuple[str, HostTemplate], ...] = (
    ("github", GITHUB),
    ("gitlab", GITLAB),
    ("gitea", GITEA),
    ("forgejo", GITEA),
    ("bitbucket", BITBUCKET),
)


class UrlResolver:
    """Resolves repository pages to browser URLs."""

    def __init__(self, templates: dict[str, HostTemplate] | None = None):
        self.templates = dict(BUILTIN_TEMPLATES)
        if templates:
            self.templates.update({host.lower(): t for host, t in templates.items()})

    def template_for(self, host: str) -> HostTemplate | None:
        """Find the template of a host, falling back to its product family."""
        host = host.lower()
        template = self.templates.get(host)
        if template is not None:
            return template
        for marker, family in HOST_FAMILIES:
            if marker in host:
                return family
        return None

    def resolve(
        self,
        identity: RepoIdentity,
        page_kind: PageKind,
        number: int | None = None,
        *,
        remote_url: str | None = None,
    ) -> str:
        """Return the URL of a repository page.

        Without ``number`` a pull request or issue page resolves to the
        listing of all of them.

        Raises:
            UnknownHostError: no template applies (for ``HOME``, only when
                ``remote_url`` is not given either).
            ResolveError: a template placeholder cannot be filled.
        """
        if number is not None and number <= 0:
            raise ResolveError(f"Invalid number: {number}")

        template = self.template_for(identity.host)
        if template is None:
            if page_kind == PageKind.HOME and remote_url:
                return home_from_remote(remote_url)
            raise UnknownHostError(identity.host)

        values = {
            "host": identity.host.lower(),
            "owner": identity.owner,
            "name": identity.name,
        }
        try:
            home = template.home.format(**values).rstrip("/")
            if page_kind == PageKind.HOME:
                return home

            if page_kind == PageKind.PULL_REQUEST:
                pattern, list_pattern = template.pr, template.pr_list
            else:
                pattern, list_pattern = template.issue, template.issue_list
            if number is None:
                pattern = list_pattern or _strip_number(pattern)
            return pattern.format(home=home, number=number, **values)
        except (KeyError, IndexError, ValueError) as e:
            raise ResolveError(f"Invalid URL template for {identity.host}: {e}") from e


def _strip_number(pattern: str) -> str:
    for suffix in ("/{number}", "{number}"):
        if pattern.endswith(suffix):
            return pattern[: -len(suffix)]
    return pattern.replace("{number}", "")


def home_from_remote(remote_url: str) -> str:
    """Derive a web home straight from a remote URL.

    HTTP(S) remotes keep their scheme; every other transport maps to https.
    """
    try:
        identity = parse_remote(remote_url)
    except ParseError as e:
        raise ResolveError(str(e)) from e
    if remote_url.strip().lower().startswith("http://"):
        return f"http://{identity.host}/{identity.full_name}"
    return https_url(identity)
