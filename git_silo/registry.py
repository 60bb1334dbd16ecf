"""Enumerate silos by scanning the storage root.

Every scan returns a fresh :class:`Snapshot`. Disk and git may disagree
(a worktree deleted by hand, a branch deleted elsewhere); such cases are
reported as :class:`Inconsistency` entries instead of failing the scan.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from . import git
from .config import resolve_repository_identity
from .exceptions import GitCommandError, SiloError
from .fs import (
    escape_branch,
    identity_from_metadata,
    is_hidden,
    read_repo_metadata,
    recorded_branches,
    recover_branch,
    repo_segment,
)
from .models import Inconsistency, RepoIdentity, Silo, Snapshot

logger = logging.getLogger(__name__)

BRANCH_MISSING = "branch-missing"
WORKTREE_MISSING = "worktree-missing"
BRANCH_STATE_UNKNOWN = "branch-state-unknown"
UNKNOWN_REPOSITORY = "unknown-repository"


@dataclass(frozen=True, slots=True)
class Scope:
    """Either one repository or every repository under the storage root."""

    repository: RepoIdentity | None = None

    @classmethod
    def current(cls, identity: RepoIdentity) -> "Scope":
        return cls(repository=identity)

    @classmethod
    def everything(cls) -> "Scope":
        return cls(repository=None)

    @property
    def is_all(self) -> bool:
        return self.repository is None


def _same_dir(left: Path, right: Path) -> bool:
    return left.resolve() == right.resolve()


class _SegmentScan:
    """Scan state for a single repository segment."""

    def __init__(self, segment_dir: Path, identity: RepoIdentity):
        self.segment_dir = segment_dir
        self.identity = identity
        self.silos: dict[str, Silo] = {}
        self.issues: list[Inconsistency] = []
        self._branch_sets: dict[Path | None, set[str] | None] = {}

    def note(self, kind: str, message: str, silo: Silo | None = None) -> None:
        logger.debug("%s: %s", kind, message)
        self.issues.append(Inconsistency(kind=kind, repository=self.identity.key, message=message, silo=silo))

    def branches(self, owner: Path | None) -> set[str] | None:
        if owner in self._branch_sets:
            return self._branch_sets[owner]
        branches: set[str] | None
        if owner is None or not owner.exists():
            self.note(
                BRANCH_STATE_UNKNOWN,
                f"Repository for {self.segment_dir.name} is not available"
                + (f" at {owner}" if owner else "")
                + "; branch state unknown.",
            )
            branches = None
        else:
            try:
                branches = git.list_branches(owner)
            except GitCommandError as exc:
                logger.warning("Could not list branches of %s: %s", owner, exc.stderr.strip())
                self.note(BRANCH_STATE_UNKNOWN, f"Could not list branches of {owner}; branch state unknown.")
                branches = None
        self._branch_sets[owner] = branches
        return branches

    @property
    def owners(self) -> list[Path]:
        return [owner for owner in self._branch_sets if owner is not None and owner.exists()]

    def add_present(self, child: Path) -> None:
        branch = recover_branch(child.name)
        owner = git.main_worktree_from_silo(child) or self.identity.root
        branches = self.branches(owner)
        present = None if branches is None else branch in branches
        silo = Silo(
            repository=self.identity,
            branch=branch,
            storage_path=child,
            main_worktree=owner,
            worktree_present=True,
            branch_present=present,
        )
        self.silos[branch] = silo
        if present is False:
            self.note(BRANCH_MISSING, f"Branch '{branch}' no longer exists but its worktree does: {child}", silo)

    def add_missing(self, branch: str, path: Path, owner: Path | None, branches: set[str] | None) -> None:
        silo = Silo(
            repository=self.identity,
            branch=branch,
            storage_path=path,
            main_worktree=owner,
            worktree_present=False,
            branch_present=None if branches is None else branch in branches,
        )
        self.silos[branch] = silo
        self.note(WORKTREE_MISSING, f"Worktree for '{branch}' is missing from disk: {path}", silo)

    def add_registered_missing(self) -> None:
        for owner in self.owners:
            try:
                entries = git.worktree_list(owner)
            except GitCommandError as exc:
                logger.warning("Could not list worktrees of %s: %s", owner, exc.stderr.strip())
                continue
            for entry in entries:
                if entry.path.exists() or is_hidden(entry.path):
                    continue
                if not _same_dir(entry.path.parent, self.segment_dir):
                    continue
                branch = entry.branch or recover_branch(entry.path.name)
                if branch in self.silos:
                    continue
                self.add_missing(branch, entry.path, owner, self.branches(owner))

    def add_recorded_missing(self, order: list[str]) -> None:
        owner = self.identity.root
        for branch in order:
            if branch in self.silos:
                continue
            branches = self.branches(owner)
            if branches is None or branch not in branches:
                continue
            self.add_missing(branch, self.segment_dir / escape_branch(branch), owner, branches)

    def ordered(self, order: list[str]) -> list[Silo]:
        rank = {branch: index for index, branch in enumerate(order)}
        return sorted(self.silos.values(), key=lambda s: (rank.get(s.branch, len(rank)), s.branch))


class SiloRegistry:
    def __init__(self, storage_root: Path):
        self.storage_root = storage_root

    def scan(self, scope: Scope) -> Snapshot:
        silos: list[Silo] = []
        issues: list[Inconsistency] = []
        for segment_dir in self._segment_dirs(scope):
            scanned = self._scan_segment(segment_dir, scope)
            if scanned is None:
                continue
            group, group_issues = scanned
            silos.extend(group)
            issues.extend(group_issues)
        return Snapshot(silos=tuple(silos), inconsistencies=tuple(issues))

    def _segment_dirs(self, scope: Scope) -> list[Path]:
        if scope.repository is not None:
            return [self.storage_root / repo_segment(scope.repository)]
        if not self.storage_root.is_dir():
            return []
        return sorted(
            child for child in self.storage_root.iterdir() if child.is_dir() and not is_hidden(child)
        )

    def _scan_segment(self, segment_dir: Path, scope: Scope) -> tuple[list[Silo], list[Inconsistency]] | None:
        children = self._silo_dirs(segment_dir)
        identity, issue = self._identify(segment_dir, children, scope)
        scan = _SegmentScan(segment_dir, identity)
        if issue:
            scan.note(UNKNOWN_REPOSITORY, issue)
        if identity.root is not None:
            scan.branches(identity.root)
        for child in children:
            scan.add_present(child)
        scan.add_registered_missing()
        order = recorded_branches(segment_dir)
        scan.add_recorded_missing(order)
        if not scan.silos and scope.repository is not None and not segment_dir.exists():
            return None
        return scan.ordered(order), scan.issues

    @staticmethod
    def _silo_dirs(segment_dir: Path) -> list[Path]:
        if not segment_dir.is_dir():
            return []
        return sorted(child for child in segment_dir.iterdir() if child.is_dir() and not is_hidden(child))

    @staticmethod
    def _identify(segment_dir: Path, children: list[Path], scope: Scope) -> tuple[RepoIdentity, str | None]:
        if scope.repository is not None:
            return scope.repository, None
        data = read_repo_metadata(segment_dir)
        if data is not None:
            return identity_from_metadata(data), None
        for child in children:
            owner = git.main_worktree_from_silo(child)
            if owner is None or not owner.exists():
                continue
            try:
                return resolve_repository_identity(owner), None
            except SiloError as exc:
                logger.debug("Could not identify %s from %s: %s", segment_dir, owner, exc)
        name = segment_dir.name.rsplit("-", 1)[0] or segment_dir.name
        placeholder = RepoIdentity(key=str(segment_dir), name=name)
        return placeholder, f"Could not determine which repository owns {segment_dir}."


__all__ = [
    "Scope",
    "SiloRegistry",
    "BRANCH_MISSING",
    "WORKTREE_MISSING",
    "BRANCH_STATE_UNKNOWN",
    "UNKNOWN_REPOSITORY",
]
