"""High-level orchestration for silo operations."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from . import git
from .activity import ActivityDetector
from .config import resolve_repository_identity
from .exceptions import AlreadyExistsError, RepoDetectionError, ValidationError
from .fs import (
    METADATA_FILE,
    TRASH_PREFIX,
    derive_path,
    ensure_directory,
    is_hidden,
    read_repo_metadata,
    record_branch,
)
from .models import ActivityState, RepoIdentity, Settings, Silo, Snapshot
from .names import resolve
from .registry import Scope, SiloRegistry
from .removal import Blocked, Decision, LifecycleGuard, PruneReport, RemovalOutcome, prune, remove_cleared

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GarbageReport:
    orphaned: list[Path] = field(default_factory=list)
    trash: list[Path] = field(default_factory=list)
    empty: list[Path] = field(default_factory=list)
    failed: list[tuple[Path, str]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.orphaned) + len(self.trash) + len(self.empty)


@dataclass
class SiloService:
    settings: Settings
    repo: RepoIdentity | None = None
    detector: ActivityDetector | None = None
    guard: LifecycleGuard = field(init=False)
    registry: SiloRegistry = field(init=False)

    def __post_init__(self) -> None:
        self.guard = LifecycleGuard(self.detector)
        self.registry = SiloRegistry(self.settings.storage_root)

    @classmethod
    def for_path(cls, settings: Settings, path: Path | None, detector: ActivityDetector | None = None) -> "SiloService":
        """Build a service for the repository containing ``path``, if any."""

        try:
            repo = resolve_repository_identity(path or Path.cwd())
        except RepoDetectionError:
            if path is not None:
                raise
            repo = None
        return cls(settings, repo=repo, detector=detector)

    def require_repo(self) -> RepoIdentity:
        if self.repo is None or self.repo.root is None:
            raise RepoDetectionError("Not in a git repository. Run inside a repository or pass --repo.")
        return self.repo

    def scope(self, all_repos: bool) -> Scope:
        if all_repos or self.repo is None:
            return Scope.everything()
        return Scope.current(self.repo)

    def list(self, all_repos: bool = False) -> Snapshot:
        return self.registry.scan(self.scope(all_repos))

    def new(self, branch: str, start_point: str | None = None) -> Silo:
        repo = self.require_repo()
        root = repo.root
        branch = branch.strip()
        if not branch or not git.check_ref_format(root, branch):
            raise ValidationError(f"Invalid branch name: '{branch}'")
        target = derive_path(self.settings.storage_root, repo, branch)
        existing = [silo for silo in self.list().silos if silo.branch == branch]
        if existing:
            raise AlreadyExistsError(branch, str(existing[0].storage_path))
        if target.exists():
            raise AlreadyExistsError(branch, str(target))
        ensure_directory(target.parent)
        if git.branch_exists(root, branch):
            if start_point:
                raise ValidationError(f"Branch '{branch}' already exists; --from only applies to new branches.")
            git.worktree_add_existing(root, target, branch)
        else:
            git.worktree_add_new(root, target, branch, start_point)
        record_branch(target.parent, repo, branch)
        logger.debug("Created silo %s for %s", target, repo.key)
        return Silo(repository=repo, branch=branch, storage_path=target, main_worktree=root)

    def resolve(self, query: str, all_repos: bool = True) -> Silo:
        snapshot = self.list(all_repos=all_repos)
        return resolve(query, snapshot.silos, prefer=self.repo).unwrap()

    def activity(self, silo: Silo) -> ActivityState | None:
        """Current activity of a silo, or ``None`` when its worktree is gone."""

        if not silo.worktree_present or not silo.storage_path.exists():
            return None
        return self.guard.detector.state(silo.storage_path)

    def check(self, silo: Silo, force: bool = False) -> Decision:
        return self.guard.check_removable(silo, force=force)

    def remove(self, query: str, force: bool = False) -> RemovalOutcome:
        silo = self.resolve(query)
        return self.remove_decided(self.check(silo, force=force), query)

    def remove_decided(self, decision: Decision, label: str) -> RemovalOutcome:
        if isinstance(decision, Blocked):
            raise decision.error(label)
        return remove_cleared(decision.cleared, self.guard)

    def prune(self, all_repos: bool = False, force: bool = False) -> tuple[PruneReport, Snapshot]:
        snapshot = self.list(all_repos=all_repos)
        return prune(snapshot.silos, self.guard, force=force), snapshot

    def collect_garbage(self, dry_run: bool = False) -> GarbageReport:
        """Remove segments of deleted repositories, trash leftovers and empty segments."""

        report = GarbageReport()
        root = self.settings.storage_root
        if not root.is_dir():
            return report
        for segment_dir in sorted(root.iterdir()):
            if not segment_dir.is_dir() or is_hidden(segment_dir):
                continue
            if self._is_orphaned(segment_dir):
                report.orphaned.append(segment_dir)
                continue
            children = list(segment_dir.iterdir())
            report.trash.extend(sorted(c for c in children if c.name.startswith(TRASH_PREFIX)))
            remaining = [
                c for c in children if c.name != METADATA_FILE and not c.name.startswith(TRASH_PREFIX)
            ]
            if not remaining:
                report.empty.append(segment_dir)
        if not dry_run:
            for path in [*report.orphaned, *report.trash, *report.empty]:
                try:
                    shutil.rmtree(path)
                except FileNotFoundError:
                    continue
                except OSError as exc:
                    logger.warning("Failed to remove %s: %s", path, exc)
                    report.failed.append((path, str(exc)))
        return report

    @staticmethod
    def _is_orphaned(segment_dir: Path) -> bool:
        data = read_repo_metadata(segment_dir)
        if data is not None and data.get("root"):
            return not Path(data["root"]).exists()
        owners = [
            git.main_worktree_from_silo(child)
            for child in segment_dir.iterdir()
            if child.is_dir() and not is_hidden(child)
        ]
        known = [owner for owner in owners if owner is not None]
        return bool(known) and not any(owner.exists() for owner in known)


__all__ = ["SiloService", "GarbageReport"]
