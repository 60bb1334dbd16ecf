"""Filesystem layout for silos: derived paths, branch escaping and metadata."""

from __future__ import annotations

import hashlib
import json
import logging
import os
from pathlib import Path
from urllib.parse import quote, unquote

from .exceptions import ValidationError
from .models import RepoIdentity

logger = logging.getLogger(__name__)

METADATA_FILE = ".repository.json"
TRASH_PREFIX = ".trash-"
DIGEST_LENGTH = 8


def identity_digest(identity: RepoIdentity) -> str:
    return hashlib.sha256(identity.key.encode("utf-8")).hexdigest()[:DIGEST_LENGTH]


def repo_segment(identity: RepoIdentity) -> str:
    """Directory name for a repository: ``<name>-<digest of key>``."""

    return f"{identity.name}-{identity_digest(identity)}"


def escape_branch(branch: str) -> str:
    """Produce a single, reversible path component for a branch name."""

    if not branch:
        raise ValidationError("Branch name cannot be empty.")
    return quote(branch, safe="")


def recover_branch(name: str) -> str:
    return unquote(name)


def derive_path(storage_root: Path, identity: RepoIdentity, branch: str) -> Path:
    return storage_root / repo_segment(identity) / escape_branch(branch)


def is_hidden(path: Path) -> bool:
    return path.name.startswith(".")


def trash_path(silo_path: Path) -> Path:
    return silo_path.parent / f"{TRASH_PREFIX}{silo_path.name}-{os.getpid()}"


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def read_repo_metadata(segment_dir: Path) -> dict | None:
    path = segment_dir / METADATA_FILE
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable metadata %s: %s", path, exc)
        return None
    if not isinstance(data, dict) or not data.get("key") or not data.get("name"):
        logger.warning("Ignoring malformed metadata %s", path)
        return None
    return data


def identity_from_metadata(data: dict) -> RepoIdentity:
    root = data.get("root")
    return RepoIdentity(
        key=str(data["key"]),
        name=str(data["name"]),
        parents=tuple(str(part) for part in data.get("parents") or ()),
        root=Path(root) if root else None,
    )


def write_repo_metadata(segment_dir: Path, identity: RepoIdentity, branches: list[str]) -> None:
    payload = {
        "key": identity.key,
        "name": identity.name,
        "parents": list(identity.parents),
        "root": str(identity.root) if identity.root else None,
        "branches": branches,
    }
    ensure_directory(segment_dir)
    target = segment_dir / METADATA_FILE
    tmp = segment_dir / f"{METADATA_FILE}.{os.getpid()}.tmp"
    tmp.write_text(json.dumps(payload, indent=2) + "\n")
    os.replace(tmp, target)


def recorded_branches(segment_dir: Path) -> list[str]:
    data = read_repo_metadata(segment_dir) or {}
    branches = data.get("branches") or []
    return [str(branch) for branch in branches]


def record_branch(segment_dir: Path, identity: RepoIdentity, branch: str) -> None:
    branches = [b for b in recorded_branches(segment_dir) if b != branch]
    branches.append(branch)
    write_repo_metadata(segment_dir, identity, branches)


def forget_branch(segment_dir: Path, branch: str) -> None:
    data = read_repo_metadata(segment_dir)
    if data is None:
        return
    branches = [b for b in data.get("branches") or [] if b != branch]
    write_repo_metadata(segment_dir, identity_from_metadata(data), branches)


def is_effectively_empty(segment_dir: Path) -> bool:
    """True when a segment holds nothing but its metadata file."""

    try:
        children = list(segment_dir.iterdir())
    except FileNotFoundError:
        return False
    return all(child.name == METADATA_FILE for child in children)


__all__ = [
    "METADATA_FILE",
    "TRASH_PREFIX",
    "identity_digest",
    "repo_segment",
    "escape_branch",
    "recover_branch",
    "derive_path",
    "is_hidden",
    "trash_path",
    "ensure_directory",
    "read_repo_metadata",
    "identity_from_metadata",
    "write_repo_metadata",
    "recorded_branches",
    "record_branch",
    "forget_branch",
    "is_effectively_empty",
]
