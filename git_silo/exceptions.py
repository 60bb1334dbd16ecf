"""Custom error hierarchy for git-silo."""

from __future__ import annotations

from typing import Sequence


class SiloError(RuntimeError):
    """Base error for the CLI."""


class MissingEnvError(SiloError):
    """Raised when the configured storage root is unusable."""


class RepoDetectionError(SiloError):
    """Raised when we cannot resolve repository metadata."""


class GitCommandError(SiloError):
    """Raised when an underlying git command fails.

    The message is a short prefix followed by git's own output, untouched,
    so the user sees exactly what git complained about.
    """

    def __init__(
        self,
        command: list[str],
        returncode: int,
        *,
        stdout: str | None = None,
        stderr: str | None = None,
    ):
        self.command = command
        self.returncode = returncode
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        message = f"git command failed (exit {returncode}): {' '.join(command)}"
        details = "\n".join(
            section
            for section in (self.stdout.strip(), self.stderr.strip())
            if section
        )
        if details:
            message = f"{message}\n{details}"
        super().__init__(message)


class RegistrationCleanupError(GitCommandError):
    """Raised when a worktree was removed but `git worktree prune` failed.

    The silo is left in the "worktree missing" state; removing it again
    retries the prune.
    """

    def __init__(self, path: str, cause: GitCommandError):
        super().__init__(cause.command, cause.returncode, stdout=cause.stdout, stderr=cause.stderr)
        self.path = path
        self.args = (
            f"Removed worktree at {path}, but cleaning its git registration failed. "
            f"Remove the silo again to retry.\n{cause}",
        )


class ValidationError(SiloError):
    """Raised when user input fails validation."""


class UserAbort(SiloError):
    """Raised when the user cancels an interactive flow."""


class NotFoundError(SiloError):
    """Raised when a query matches no silo."""

    def __init__(self, query: str):
        self.query = query
        super().__init__(f"Silo not found: {query}")


class AmbiguousError(SiloError):
    """Raised when a query matches several silos."""

    def __init__(self, query: str, suggestions: Sequence[str]):
        self.query = query
        self.suggestions = list(suggestions)
        listing = "\n  ".join(self.suggestions)
        super().__init__(f"Ambiguous silo name '{query}'. Did you mean one of:\n  {listing}")


class AlreadyExistsError(SiloError):
    """Raised when a silo already exists for a (repository, branch) pair."""

    def __init__(self, branch: str, path: str):
        self.branch = branch
        self.path = path
        super().__init__(f"A silo for branch '{branch}' already exists at {path}")


class BlockedError(SiloError):
    """Raised when removal is refused because the silo is in use or dirty."""

    def __init__(self, label: str, reasons: Sequence[str]):
        self.label = label
        self.reasons = list(reasons)
        self.decision = None
        lines = [f"Silo '{label}' cannot be removed:"]
        lines.extend(f"  - {reason}" for reason in self.reasons)
        lines.append("Use --force to remove anyway.")
        super().__init__("\n".join(lines))


__all__ = [
    "SiloError",
    "MissingEnvError",
    "RepoDetectionError",
    "GitCommandError",
    "RegistrationCleanupError",
    "ValidationError",
    "UserAbort",
    "NotFoundError",
    "AmbiguousError",
    "AlreadyExistsError",
    "BlockedError",
]
