"""Storage root configuration and repository identity resolution."""

from __future__ import annotations

import os
import re
from pathlib import Path
from urllib.parse import urlparse

import platformdirs

from .exceptions import GitCommandError, MissingEnvError, RepoDetectionError
from .git import common_dir, remote_url, rev_parse_toplevel
from .models import RepoIdentity, Settings

APP_NAME = "silo"
ROOT_ENV = "SILO_ROOT"

_SCP_LIKE_RE = re.compile(r"^(?:[^@/]+@)?(?P<host>[^/:]+):(?P<path>[^/].*)$")


def load_settings() -> Settings:
    return Settings(storage_root=resolve_storage_root())


def resolve_storage_root() -> Path:
    raw = os.environ.get(ROOT_ENV)
    if raw:
        path = Path(raw).expanduser().resolve()
    else:
        path = platformdirs.user_data_path(APP_NAME).resolve()
    if path.exists():
        if not path.is_dir():
            raise MissingEnvError(f"Storage root is not a directory: {path}. Update {ROOT_ENV}.")
        if not os.access(path, os.W_OK | os.X_OK):
            raise MissingEnvError(
                f"Storage root is not writable: {path}. Adjust permissions or pick another location."
            )
    return path


def resolve_repo_path(repo_override: Path | None) -> Path:
    """Return the root of the main worktree for ``repo_override`` or the cwd.

    Running from inside a silo still yields the owning repository.
    """

    if repo_override:
        candidate = repo_override.expanduser()
        if not candidate.exists():
            raise RepoDetectionError(f"Repository override path does not exist: {candidate}")
    else:
        candidate = Path.cwd()
    try:
        toplevel = rev_parse_toplevel(candidate)
        shared = common_dir(candidate)
    except GitCommandError as exc:
        raise RepoDetectionError("Current directory is not inside a git repository.") from exc
    if shared.name == ".git":
        return shared.parent
    return toplevel.resolve()


def parse_remote(remote: str) -> tuple[str, tuple[str, ...]] | None:
    """Split a remote URL into ``(host, path parts)``.

    Local paths and ``file://`` remotes are not network identities and
    return ``None``.
    """

    remote = remote.strip()
    if "://" in remote:
        parsed = urlparse(remote)
        if parsed.scheme == "file":
            return None
        host = parsed.hostname or ""
        path = parsed.path
    else:
        match = _SCP_LIKE_RE.match(remote)
        if not match:
            return None
        host = match.group("host")
        path = match.group("path")
    parts = [part for part in path.split("/") if part]
    if not host or not parts:
        return None
    name = parts[-1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    if not name:
        return None
    return host.lower(), (*parts[:-1], name)


def identity_from_remote(remote: str, root: Path | None = None) -> RepoIdentity | None:
    parsed = parse_remote(remote)
    if parsed is None:
        return None
    host, parts = parsed
    return RepoIdentity(
        key="/".join((host, *parts)),
        name=parts[-1],
        parents=(host, *parts[:-1]),
        root=root,
    )


def identity_from_path(root: Path) -> RepoIdentity:
    canonical = root.resolve()
    parents = canonical.parent.parts
    if canonical.anchor and parents and parents[0] == canonical.anchor:
        parents = parents[1:]
    return RepoIdentity(
        key=str(canonical),
        name=canonical.name or "repo",
        parents=tuple(parents),
        root=canonical,
    )


def resolve_repository_identity(path: Path) -> RepoIdentity:
    root = resolve_repo_path(path)
    remote = remote_url(root)
    if remote:
        identity = identity_from_remote(remote, root=root)
        if identity is not None:
            return identity
    return identity_from_path(root)


__all__ = [
    "APP_NAME",
    "ROOT_ENV",
    "load_settings",
    "resolve_storage_root",
    "resolve_repo_path",
    "parse_remote",
    "identity_from_remote",
    "identity_from_path",
    "resolve_repository_identity",
]
