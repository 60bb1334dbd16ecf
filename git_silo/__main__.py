"""Module entrypoint for `python -m git_silo`."""

from __future__ import annotations

from .cli import app


def main() -> None:
    app(prog_name="git-silo")


if __name__ == "__main__":
    main()
