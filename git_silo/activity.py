"""Point-in-time detection of whether a silo is in use.

A silo is active when git reports uncommitted changes in it, or when a live
process has its working directory inside it. Both checks race with the
outside world, so a negative answer is advisory only.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Iterable, Protocol

import psutil

from . import git
from .exceptions import GitCommandError
from .models import ActivityState, UncommittedStats

logger = logging.getLogger(__name__)

# Reported when git cannot tell us whether the worktree is clean.
UNKNOWN_STATUS = UncommittedStats(modified=1)


class ProcessTable(Protocol):
    def list_active_working_directories(self) -> set[Path]: ...


class PsutilProcessTable:
    """Working directories of every process on the host, via psutil."""

    def __init__(self, exclude_pids: Iterable[int] | None = None):
        self.exclude_pids = set(exclude_pids) if exclude_pids is not None else {os.getpid()}

    def list_active_working_directories(self) -> set[Path]:
        directories: set[Path] = set()
        for proc in psutil.process_iter(["pid", "cwd"]):
            try:
                if proc.info["pid"] in self.exclude_pids:
                    continue
                cwd = proc.info.get("cwd")
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
            if cwd:
                directories.add(Path(cwd))
        return directories


class StaticProcessTable:
    """A fixed process table, for callers that do their own bookkeeping."""

    def __init__(self, directories: Iterable[Path] = ()):
        self.directories = {Path(directory) for directory in directories}

    def list_active_working_directories(self) -> set[Path]:
        return set(self.directories)


def _canonical(path: Path) -> Path:
    try:
        return path.resolve()
    except OSError:
        return path.absolute()


class ActivityDetector:
    def __init__(
        self,
        process_table: ProcessTable | None = None,
        status: Callable[[Path], UncommittedStats] = git.uncommitted_stats,
    ):
        self.process_table = process_table if process_table is not None else PsutilProcessTable()
        self.status = status

    def uncommitted(self, path: Path) -> UncommittedStats:
        try:
            return self.status(path)
        except (GitCommandError, OSError) as exc:
            logger.warning("Could not read status of %s, treating it as dirty: %s", path, exc)
            return UNKNOWN_STATUS

    def processes_in(self, path: Path) -> set[Path]:
        """Process working directories equal to ``path`` or below it."""

        target = _canonical(path)
        matches: set[Path] = set()
        for cwd in self.process_table.list_active_working_directories():
            candidate = _canonical(cwd)
            if candidate == target or candidate.is_relative_to(target):
                matches.add(candidate)
        return matches

    def state(self, path: Path) -> ActivityState:
        return ActivityState(
            uncommitted=self.uncommitted(path),
            working_directories=frozenset(self.processes_in(path)),
        )

    def is_active(self, path: Path) -> bool:
        return self.state(path).is_active


__all__ = [
    "ProcessTable",
    "PsutilProcessTable",
    "StaticProcessTable",
    "ActivityDetector",
    "UNKNOWN_STATUS",
]
