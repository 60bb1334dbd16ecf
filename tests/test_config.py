"""Tests for storage root configuration and repository identities."""

from __future__ import annotations

import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from git_silo.config import (
    ROOT_ENV,
    identity_from_path,
    identity_from_remote,
    parse_remote,
    resolve_storage_root,
)
from git_silo.exceptions import MissingEnvError


class ParseRemoteTests(unittest.TestCase):
    def test_https_url(self) -> None:
        self.assertEqual(
            parse_remote("https://github.com/orgA/app.git"),
            ("github.com", ("orgA", "app")),
        )

    def test_scp_like_url(self) -> None:
        self.assertEqual(
            parse_remote("git@GitHub.com:orgA/app.git"),
            ("github.com", ("orgA", "app")),
        )

    def test_ssh_url_with_port_and_nested_groups(self) -> None:
        self.assertEqual(
            parse_remote("ssh://git@gitlab.example.com:2222/group/sub/app"),
            ("gitlab.example.com", ("group", "sub", "app")),
        )

    def test_local_remotes_are_not_identities(self) -> None:
        for remote in ["/srv/git/app.git", "file:///srv/git/app.git", "../app"]:
            with self.subTest(remote=remote):
                self.assertIsNone(parse_remote(remote))


class IdentityTests(unittest.TestCase):
    def test_identity_from_remote(self) -> None:
        identity = identity_from_remote("git@github.com:orgA/app.git", root=Path("/work/app"))

        self.assertEqual(identity.key, "github.com/orgA/app")
        self.assertEqual(identity.name, "app")
        self.assertEqual(identity.parents, ("github.com", "orgA"))
        self.assertEqual(identity.qualifiers, ("github.com", "orgA", "app"))

    def test_clones_of_the_same_remote_are_equal(self) -> None:
        first = identity_from_remote("https://github.com/orgA/app", root=Path("/a/app"))
        second = identity_from_remote("git@github.com:orgA/app.git", root=Path("/b/checkout"))

        self.assertEqual(first, second)

    def test_identity_from_path(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp).resolve() / "projects" / "app"
            root.mkdir(parents=True)

            identity = identity_from_path(root)

            self.assertEqual(identity.key, str(root))
            self.assertEqual(identity.name, "app")
            self.assertEqual(identity.parents[-1], "projects")
            self.assertEqual(identity.root, root)


class StorageRootTests(unittest.TestCase):
    def test_env_override_is_expanded(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with mock.patch.dict(os.environ, {ROOT_ENV: tmp}):
                self.assertEqual(resolve_storage_root(), Path(tmp).resolve())

    def test_missing_root_is_allowed(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "not-yet"
            with mock.patch.dict(os.environ, {ROOT_ENV: str(target)}):
                self.assertEqual(resolve_storage_root(), target.resolve())

    def test_file_as_root_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "file"
            target.write_text("")
            with mock.patch.dict(os.environ, {ROOT_ENV: str(target)}):
                with self.assertRaises(MissingEnvError):
                    resolve_storage_root()


if __name__ == "__main__":
    unittest.main()
