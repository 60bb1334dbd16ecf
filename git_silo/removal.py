"""Silo removal with guarded, type-checked clearance.

:class:`LifecycleGuard` is the only producer of :class:`ClearedSilo`, and
:func:`remove_cleared` only accepts a :class:`ClearedSilo`, so nothing can be
removed without going through the checks. Removal re-checks activity right
before acting and never deletes the branch.
"""

from __future__ import annotations

import enum
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence, Union

from . import git
from .activity import ActivityDetector
from .exceptions import BlockedError, GitCommandError, RegistrationCleanupError, SiloError
from .fs import forget_branch, is_effectively_empty, trash_path
from .models import ActivityState, Silo

logger = logging.getLogger(__name__)

_GUARD_KEY = object()


class Blocker(enum.Enum):
    UNCOMMITTED_CHANGES = "uncommitted-changes"
    ACTIVE_PROCESSES = "active-processes"


@dataclass(frozen=True, slots=True)
class BlockReason:
    blocker: Blocker
    detail: str

    def __str__(self) -> str:
        return self.detail


@dataclass(frozen=True, slots=True)
class ClearedSilo:
    """A silo that passed (or was forced past) the lifecycle checks."""

    silo: Silo
    forced: bool = False
    confirm: bool = True
    overridden: tuple[BlockReason, ...] = ()
    _key: object = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self._key is not _GUARD_KEY:
            raise TypeError("ClearedSilo can only be created by LifecycleGuard.check_removable")


@dataclass(frozen=True, slots=True)
class Allowed:
    cleared: ClearedSilo

    @property
    def silo(self) -> Silo:
        return self.cleared.silo


@dataclass(frozen=True, slots=True)
class Blocked:
    silo: Silo
    reasons: tuple[BlockReason, ...]

    def error(self, label: str | None = None) -> BlockedError:
        exc = BlockedError(label or self.silo.branch, [str(reason) for reason in self.reasons])
        exc.decision = self
        return exc


Decision = Union[Allowed, Blocked]


@dataclass(frozen=True, slots=True)
class RemovalOutcome:
    silo: Silo
    pruned_registration: bool


@dataclass(slots=True)
class PruneReport:
    removed: list[RemovalOutcome] = field(default_factory=list)
    blocked: list[Blocked] = field(default_factory=list)
    failed: list[tuple[Silo, str]] = field(default_factory=list)


def describe_activity(state: ActivityState) -> list[BlockReason]:
    reasons: list[BlockReason] = []
    stats = state.uncommitted
    if state.has_uncommitted_changes:
        reasons.append(
            BlockReason(
                Blocker.UNCOMMITTED_CHANGES,
                f"Uncommitted changes: {stats.staged} staged, {stats.modified} modified, "
                f"{stats.untracked} untracked",
            )
        )
    if state.is_in_use_by_process:
        directories = ", ".join(sorted(str(path) for path in state.working_directories))
        reasons.append(
            BlockReason(
                Blocker.ACTIVE_PROCESSES,
                f"In use by {len(state.working_directories)} process working directory(ies): {directories}",
            )
        )
    return reasons


class LifecycleGuard:
    def __init__(self, detector: ActivityDetector | None = None):
        self.detector = detector if detector is not None else ActivityDetector()

    def reasons(self, silo: Silo) -> list[BlockReason]:
        return describe_activity(self.detector.state(silo.storage_path))

    def check_removable(self, silo: Silo, force: bool = False) -> Decision:
        if not silo.worktree_present or not silo.storage_path.exists():
            return Allowed(ClearedSilo(silo, forced=force, confirm=False, _key=_GUARD_KEY))
        reasons = self.reasons(silo)
        if reasons and not force:
            return Blocked(silo, tuple(reasons))
        return Allowed(ClearedSilo(silo, forced=force, overridden=tuple(reasons), _key=_GUARD_KEY))


def _prune_registration(silo: Silo) -> bool:
    owner = silo.main_worktree
    if owner is None or not owner.exists():
        logger.debug("No repository available to prune registration of %s", silo.storage_path)
        return False
    git.worktree_prune(owner)
    return True


def _finish(silo: Silo) -> None:
    segment_dir = silo.storage_path.parent
    try:
        forget_branch(segment_dir, silo.branch)
    except OSError as exc:
        logger.warning("Could not update metadata in %s: %s", segment_dir, exc)
    if is_effectively_empty(segment_dir):
        shutil.rmtree(segment_dir, ignore_errors=True)


def remove_cleared(cleared: ClearedSilo, guard: LifecycleGuard) -> RemovalOutcome:
    """Remove a cleared silo.

    The worktree is first renamed to a hidden trash directory in one atomic
    step. From then on the silo is in the "worktree missing" state, which a
    later ``rm`` or ``prune`` can finish if we are interrupted. Registration
    is cleaned with ``git worktree prune``; the branch is kept.
    """

    if not isinstance(cleared, ClearedSilo):
        raise TypeError("remove_cleared requires a ClearedSilo from LifecycleGuard")
    silo = cleared.silo
    path = silo.storage_path
    trash: Path | None = None
    if path.exists():
        if not cleared.forced:
            reasons = guard.reasons(silo)
            if reasons:
                raise Blocked(silo, tuple(reasons)).error()
        trash = trash_path(path)
        path.rename(trash)
        logger.debug("Moved %s to %s", path, trash)
    try:
        pruned = _prune_registration(silo)
    except GitCommandError as exc:
        if trash is None:
            raise
        raise RegistrationCleanupError(str(path), exc) from exc
    finally:
        if trash is not None:
            try:
                shutil.rmtree(trash)
            except OSError as exc:
                logger.warning("Could not delete %s, run `git-silo gc` later: %s", trash, exc)
    _finish(silo)
    return RemovalOutcome(silo=silo, pruned_registration=pruned)


def prune(silos: Sequence[Silo], guard: LifecycleGuard, force: bool = False) -> PruneReport:
    """Remove every silo the guard allows; collect the rest.

    Blocked silos and failed removals are reported, never raised.
    """

    report = PruneReport()
    for silo in silos:
        try:
            decision = guard.check_removable(silo, force=force)
            if isinstance(decision, Blocked):
                report.blocked.append(decision)
                continue
            report.removed.append(remove_cleared(decision.cleared, guard))
        except BlockedError as exc:
            # Became active between the check and the removal.
            report.blocked.append(exc.decision or Blocked(silo, ()))
        except (SiloError, OSError) as exc:
            logger.warning("Failed to remove %s: %s", silo.storage_path, exc)
            report.failed.append((silo, str(exc)))
    return report


__all__ = [
    "Blocker",
    "BlockReason",
    "ClearedSilo",
    "Allowed",
    "Blocked",
    "Decision",
    "RemovalOutcome",
    "PruneReport",
    "LifecycleGuard",
    "describe_activity",
    "remove_cleared",
    "prune",
]
