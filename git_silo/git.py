"""Thin wrappers around git CLI commands."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Sequence

from .exceptions import GitCommandError
from .models import UncommittedStats, WorktreeEntry

logger = logging.getLogger(__name__)


def run_git(
    args: Sequence[str],
    *,
    cwd: Path | None = None,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    """Execute a git command and optionally raise on failure."""

    command = ["git", *args]
    logger.debug("Running %s (cwd=%s)", " ".join(command), cwd)
    result = subprocess.run(
        command,
        cwd=str(cwd) if cwd else None,
        text=True,
        capture_output=True,
    )
    if check and result.returncode != 0:
        raise GitCommandError(command, result.returncode, stderr=result.stderr)
    return result


def rev_parse_toplevel(path: Path) -> Path:
    proc = run_git(["rev-parse", "--show-toplevel"], cwd=path)
    return Path(proc.stdout.strip())


def remote_url(path: Path, remote: str = "origin") -> str | None:
    proc = run_git(["remote", "get-url", remote], cwd=path, check=False)
    if proc.returncode != 0:
        return None
    return proc.stdout.strip() or None


def common_dir(path: Path) -> Path:
    proc = run_git(["rev-parse", "--git-common-dir"], cwd=path)
    value = Path(proc.stdout.strip())
    if not value.is_absolute():
        value = path / value
    return value.resolve()


def list_branches(path: Path) -> set[str]:
    proc = run_git(["for-each-ref", "--format=%(refname)", "refs/heads"], cwd=path)
    prefix = "refs/heads/"
    return {
        line.strip()[len(prefix) :]
        for line in proc.stdout.splitlines()
        if line.strip().startswith(prefix)
    }


def branch_exists(path: Path, branch: str) -> bool:
    proc = run_git(
        ["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"],
        cwd=path,
        check=False,
    )
    return proc.returncode == 0


def check_ref_format(path: Path, branch: str) -> bool:
    proc = run_git(["check-ref-format", "--branch", branch], cwd=path, check=False)
    return proc.returncode == 0


def worktree_add_existing(path: Path, target: Path, branch: str) -> None:
    run_git(["worktree", "add", str(target), branch], cwd=path)


def worktree_add_new(path: Path, target: Path, branch: str, start_point: str | None = None) -> None:
    args = ["worktree", "add", "-b", branch, str(target)]
    if start_point:
        args.append(start_point)
    run_git(args, cwd=path)


def worktree_prune(path: Path) -> None:
    """Drop registrations of worktrees whose directories are gone."""

    run_git(["worktree", "prune"], cwd=path)


def worktree_list(path: Path) -> list[WorktreeEntry]:
    proc = run_git(["worktree", "list", "--porcelain"], cwd=path)
    return parse_worktree_porcelain(proc.stdout)


def parse_worktree_porcelain(text: str) -> list[WorktreeEntry]:
    entries: list[WorktreeEntry] = []
    current: dict[str, str | bool] = {}
    for line in text.splitlines() + [""]:
        if not line.strip():
            if current.get("worktree"):
                branch_value = current.get("branch")
                entries.append(
                    WorktreeEntry(
                        path=Path(str(current["worktree"])),
                        branch=_sanitize_branch(str(branch_value)) if branch_value else None,
                        is_locked=bool(current.get("locked")),
                        is_prunable=bool(current.get("prunable")),
                    )
                )
            current = {}
            continue
        key, _, value = line.partition(" ")
        if key in {"locked", "prunable"}:
            current[key] = True
        else:
            current[key] = value.strip()
    return entries


def status_porcelain(path: Path) -> str:
    return run_git(["status", "--porcelain"], cwd=path).stdout


def uncommitted_stats(path: Path) -> UncommittedStats:
    staged = modified = untracked = 0
    for line in status_porcelain(path).splitlines():
        if len(line) < 2:
            continue
        index_status, worktree_status = line[0], line[1]
        if index_status == "?":
            untracked += 1
        elif index_status != " ":
            staged += 1
        elif worktree_status != " ":
            modified += 1
    return UncommittedStats(staged=staged, modified=modified, untracked=untracked)


def main_worktree_from_silo(silo_path: Path) -> Path | None:
    """Return the owning repository root recorded in a worktree's ``.git`` file."""

    git_file = silo_path / ".git"
    try:
        content = git_file.read_text()
    except OSError:
        return None
    prefix = "gitdir:"
    if not content.startswith(prefix):
        return None
    gitdir = Path(content[len(prefix) :].strip())
    if not gitdir.is_absolute():
        gitdir = (silo_path / gitdir).resolve()
    # <root>/.git/worktrees/<name> -> <root>
    if gitdir.parent.name != "worktrees":
        return None
    return gitdir.parent.parent.parent


def _sanitize_branch(value: str) -> str:
    stripped = value.strip()
    prefix = "refs/heads/"
    if stripped.startswith(prefix):
        return stripped[len(prefix) :]
    return stripped


__all__ = [
    "run_git",
    "rev_parse_toplevel",
    "remote_url",
    "common_dir",
    "list_branches",
    "branch_exists",
    "check_ref_format",
    "worktree_add_existing",
    "worktree_add_new",
    "worktree_prune",
    "worktree_list",
    "parse_worktree_porcelain",
    "status_porcelain",
    "uncommitted_stats",
    "main_worktree_from_silo",
]
