"""Interactive prompt helpers built on InquirerPy."""

from __future__ import annotations

import sys

from InquirerPy import inquirer

from .exceptions import UserAbort, ValidationError


def _ensure_tty() -> None:
    if not sys.stdin.isatty():
        raise ValidationError("Confirmation requires a TTY. Pass --yes to run non-interactively.")


def confirm(message: str, default: bool = False) -> bool:
    _ensure_tty()
    try:
        return bool(inquirer.confirm(message=message, default=default).execute())
    except KeyboardInterrupt as exc:  # pragma: no cover - user cancel
        raise UserAbort("User cancelled the prompt.") from exc


def confirm_or_abort(message: str, default: bool = False) -> None:
    if not confirm(message, default=default):
        raise UserAbort("Aborted.")


__all__ = ["confirm", "confirm_or_abort"]
