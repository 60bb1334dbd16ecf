"""Shared dataclasses used throughout the CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True, slots=True)
class Settings:
    storage_root: Path


@dataclass(frozen=True, slots=True)
class RepoIdentity:
    """Identity of a repository independent of where it is cloned.

    ``key`` is ``host/owner/.../name`` for repositories with an origin remote
    and the canonical root path otherwise. ``root`` records the clone the
    identity was resolved from and does not take part in equality.
    """

    key: str
    name: str
    parents: tuple[str, ...] = ()
    root: Path | None = field(default=None, compare=False)

    @property
    def qualifiers(self) -> tuple[str, ...]:
        return (*self.parents, self.name)


@dataclass(frozen=True, slots=True)
class Silo:
    repository: RepoIdentity
    branch: str
    storage_path: Path
    main_worktree: Path | None = None
    worktree_present: bool = True
    branch_present: bool | None = True

    @property
    def state(self) -> str:
        if not self.worktree_present:
            return "worktree missing"
        if self.branch_present is None:
            return "unknown"
        if not self.branch_present:
            return "branch missing"
        return "ok"


@dataclass(frozen=True, slots=True)
class Inconsistency:
    """A divergence between disk and git found during a scan."""

    kind: str
    repository: str
    message: str
    silo: Silo | None = None


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Point-in-time result of a registry scan."""

    silos: tuple[Silo, ...] = ()
    inconsistencies: tuple[Inconsistency, ...] = ()


@dataclass(frozen=True, slots=True)
class UncommittedStats:
    staged: int = 0
    modified: int = 0
    untracked: int = 0

    @property
    def total(self) -> int:
        return self.staged + self.modified + self.untracked

    @property
    def is_clean(self) -> bool:
        return self.total == 0


@dataclass(frozen=True, slots=True)
class ActivityState:
    uncommitted: UncommittedStats
    working_directories: frozenset[Path] = frozenset()

    @property
    def has_uncommitted_changes(self) -> bool:
        return not self.uncommitted.is_clean

    @property
    def is_in_use_by_process(self) -> bool:
        return bool(self.working_directories)

    @property
    def is_active(self) -> bool:
        return self.has_uncommitted_changes or self.is_in_use_by_process


@dataclass(frozen=True, slots=True)
class WorktreeEntry:
    """Represents a single worktree tracked by git."""

    path: Path
    branch: str | None
    is_locked: bool = False
    is_prunable: bool = False


__all__ = [
    "Settings",
    "RepoIdentity",
    "Silo",
    "Inconsistency",
    "Snapshot",
    "UncommittedStats",
    "ActivityState",
    "WorktreeEntry",
]
