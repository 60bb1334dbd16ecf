"""Integration tests for SiloService against real git repositories."""

from __future__ import annotations

import json
import shutil
import unittest

from gitutil import GitTestCase, git, make_repo

from git_silo import git as gitcmd
from git_silo.activity import ActivityDetector, StaticProcessTable
from git_silo.config import load_settings, resolve_repository_identity
from git_silo.exceptions import AlreadyExistsError, BlockedError, NotFoundError, ValidationError
from git_silo.fs import METADATA_FILE, derive_path, repo_segment
from git_silo.names import display_names
from git_silo.registry import BRANCH_MISSING, BRANCH_STATE_UNKNOWN, WORKTREE_MISSING
from git_silo.worktrees import SiloService


class SiloServiceTestCase(GitTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.repo_path = make_repo(self.repos / "orgA" / "app", "git@github.com:orgA/app.git")
        self.service = self.service_for(self.repo_path)

    def service_for(self, path) -> SiloService:
        detector = ActivityDetector(StaticProcessTable())
        return SiloService.for_path(load_settings(), path, detector=detector)


class NewSiloTests(SiloServiceTestCase):
    def test_new_creates_worktree_at_derived_path(self) -> None:
        silo = self.service.new("feature/login")

        expected = derive_path(self.storage_root, self.service.repo, "feature/login")
        self.assertEqual(silo.storage_path, expected)
        self.assertTrue((expected / "README.md").exists())
        self.assertEqual(gitcmd.main_worktree_from_silo(expected), self.repo_path)
        registered = [entry.path.resolve() for entry in gitcmd.worktree_list(self.repo_path)]
        self.assertIn(expected.resolve(), registered)

        metadata = json.loads((expected.parent / METADATA_FILE).read_text())
        self.assertEqual(metadata["key"], "github.com/orgA/app")
        self.assertEqual(metadata["branches"], ["feature/login"])

    def test_new_checks_out_existing_branch(self) -> None:
        git(self.repo_path, "branch", "existing")

        silo = self.service.new("existing")

        self.assertEqual(git(silo.storage_path, "rev-parse", "--abbrev-ref", "HEAD"), "existing")

    def test_new_from_start_point(self) -> None:
        base = git(self.repo_path, "rev-parse", "HEAD")
        (self.repo_path / "later.txt").write_text("later\n")
        git(self.repo_path, "add", "later.txt")
        git(self.repo_path, "commit", "-m", "later")

        silo = self.service.new("from-base", start_point=base)

        self.assertEqual(git(silo.storage_path, "rev-parse", "HEAD"), base)

    def test_duplicate_and_invalid_branches_are_rejected(self) -> None:
        self.service.new("feature")

        with self.assertRaises(AlreadyExistsError):
            self.service.new("feature")
        with self.assertRaises(ValidationError):
            self.service.new("bad..name")

    def test_identity_is_the_same_from_inside_a_silo(self) -> None:
        silo = self.service.new("feature")

        self.assertEqual(resolve_repository_identity(silo.storage_path), self.service.repo)
        self.assertEqual(self.service_for(silo.storage_path).list().silos[0].branch, "feature")


class ListSiloTests(SiloServiceTestCase):
    def test_empty_repository_has_no_silos(self) -> None:
        snapshot = self.service.list()

        self.assertEqual(snapshot.silos, ())
        self.assertEqual(snapshot.inconsistencies, ())

    def test_creation_order_is_kept(self) -> None:
        for branch in ["zeta", "alpha", "mid"]:
            self.service.new(branch)

        self.assertEqual([silo.branch for silo in self.service.list().silos], ["zeta", "alpha", "mid"])

    def test_two_repositories_named_app(self) -> None:
        other_path = make_repo(self.repos / "orgB" / "app", "https://github.com/orgB/app.git")
        other = self.service_for(other_path)
        self.service.new("feature")
        other.new("feature")

        snapshot = self.service.list(all_repos=True)

        self.assertEqual(len({silo.storage_path.parent for silo in snapshot.silos}), 2)
        self.assertEqual(sorted(display_names(snapshot.silos)), ["orgA/app/feature", "orgB/app/feature"])
        self.assertEqual(self.service.resolve("feature").repository, self.service.repo)
        self.assertEqual(other.resolve("feature").repository, other.repo)
        self.assertEqual(len(self.service.list().silos), 1)

    def test_repository_without_remote_uses_its_path(self) -> None:
        local_path = make_repo(self.repos / "local" / "app")
        local = self.service_for(local_path)

        local.new("feature")

        self.assertEqual(local.repo.key, str(local_path))
        self.assertTrue((self.storage_root / repo_segment(local.repo) / "feature").is_dir())

    def test_missing_worktree_is_reported(self) -> None:
        silo = self.service.new("feature")
        shutil.rmtree(silo.storage_path)

        snapshot = self.service.list()

        self.assertEqual([s.state for s in snapshot.silos], ["worktree missing"])
        self.assertEqual([issue.kind for issue in snapshot.inconsistencies], [WORKTREE_MISSING])

    def test_missing_branch_is_reported(self) -> None:
        self.service.new("temp")
        git(self.repo_path, "update-ref", "-d", "refs/heads/temp")

        snapshot = self.service.list()

        self.assertEqual([s.state for s in snapshot.silos], ["branch missing"])
        self.assertIn(BRANCH_MISSING, [issue.kind for issue in snapshot.inconsistencies])

    def test_unavailable_repository_degrades_only_its_group(self) -> None:
        other_path = make_repo(self.repos / "orgB" / "tool", "git@github.com:orgB/tool.git")
        self.service.new("feature")
        self.service_for(other_path).new("other")
        shutil.rmtree(other_path)

        snapshot = self.service.list(all_repos=True)

        states = {silo.branch: silo.state for silo in snapshot.silos}
        self.assertEqual(states, {"feature": "ok", "other": "unknown"})
        kinds = [issue.kind for issue in snapshot.inconsistencies]
        self.assertEqual(kinds, [BRANCH_STATE_UNKNOWN])
        self.assertEqual(snapshot.inconsistencies[0].repository, "github.com/orgB/tool")


class RemoveSiloTests(SiloServiceTestCase):
    def test_remove_keeps_branch(self) -> None:
        silo = self.service.new("feature")

        outcome = self.service.remove("feature")

        self.assertTrue(outcome.pruned_registration)
        self.assertFalse(silo.storage_path.exists())
        self.assertFalse(silo.storage_path.parent.exists())
        self.assertTrue(gitcmd.branch_exists(self.repo_path, "feature"))
        self.assertEqual(len(gitcmd.worktree_list(self.repo_path)), 1)
        self.assertEqual(self.service.list().silos, ())

    def test_dirty_silo_needs_force(self) -> None:
        silo = self.service.new("feature")
        (silo.storage_path / "scratch.txt").write_text("wip\n")

        with self.assertRaises(BlockedError) as ctx:
            self.service.remove("feature")
        self.assertIn("1 untracked", str(ctx.exception))
        self.assertTrue(silo.storage_path.exists())

        self.service.remove("feature", force=True)

        self.assertFalse(silo.storage_path.exists())
        self.assertTrue(gitcmd.branch_exists(self.repo_path, "feature"))

    def test_remove_after_manual_deletion_only_cleans_up(self) -> None:
        silo = self.service.new("feature")
        shutil.rmtree(silo.storage_path)

        outcome = self.service.remove("feature")

        self.assertTrue(outcome.pruned_registration)
        self.assertEqual(len(gitcmd.worktree_list(self.repo_path)), 1)
        self.assertTrue(gitcmd.branch_exists(self.repo_path, "feature"))
        self.assertEqual(self.service.list().silos, ())
        self.assertEqual(self.service.list().inconsistencies, ())

    def test_unknown_name(self) -> None:
        with self.assertRaises(NotFoundError):
            self.service.remove("nope")

    def test_prune_skips_active_silos(self) -> None:
        idle = self.service.new("idle")
        busy = self.service.new("busy")
        (busy.storage_path / "scratch.txt").write_text("wip\n")

        report, _ = self.service.prune()

        self.assertEqual([outcome.silo.branch for outcome in report.removed], ["idle"])
        self.assertEqual([blocked.silo.branch for blocked in report.blocked], ["busy"])
        self.assertFalse(idle.storage_path.exists())
        self.assertTrue(busy.storage_path.exists())


class CollectGarbageTests(SiloServiceTestCase):
    def test_collects_trash_orphans_and_empty_segments(self) -> None:
        silo = self.service.new("feature")
        trash = silo.storage_path.parent / ".trash-old-123"
        trash.mkdir()
        orphan_path = make_repo(self.repos / "orgC" / "gone", "git@github.com:orgC/gone.git")
        orphan = self.service_for(orphan_path).new("feature")
        shutil.rmtree(orphan_path)
        empty = self.storage_root / "empty-00000000"
        empty.mkdir()

        preview = self.service.collect_garbage(dry_run=True)

        self.assertEqual(preview.trash, [trash])
        self.assertEqual(preview.orphaned, [orphan.storage_path.parent])
        self.assertEqual(preview.empty, [empty])
        self.assertTrue(trash.exists())

        report = self.service.collect_garbage()

        self.assertEqual(report.total, 3)
        self.assertFalse(trash.exists())
        self.assertFalse(orphan.storage_path.parent.exists())
        self.assertFalse(empty.exists())
        self.assertTrue(silo.storage_path.exists())


if __name__ == "__main__":
    unittest.main()
