"""Tests for slot verification."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from slot_manager.core.registry import SlotRecord
from slot_manager.reconcile.verify import CheckStatus, SlotVerifier

from tests.unit.slot_fixtures import make_git


@pytest.fixture
def layout(tmp_path):
    project = tmp_path / "app"
    slot = tmp_path / "app-1"
    project.mkdir()
    slot.mkdir()
    (slot / ".git").write_text(f"gitdir: {project}/.git/worktrees/app-1\n")
    return project, slot


def build_verifier(layout, record=None, slot_git=None, project_git=None):
    project, slot = layout
    slot_git = slot_git or make_git(branch="slot-1")
    project_git = project_git or make_git(branch="main")
    common = project / ".git"
    slot_git.common_dir.return_value = common
    project_git.common_dir.return_value = common
    slot_git.merge_base.return_value = "abc123def4567890"
    slot_git.ahead_behind.return_value = (2, 0)
    gits = {slot: slot_git, project: project_git}
    if record is None:
        record = SlotRecord(project="app", number=1, branch="slot-1")
    return SlotVerifier("app", project, "app-1", slot, record, lambda p: gits[Path(p)])


def statuses(report):
    return {c.name: c.status for c in report.checks}


class TestVerify:
    def test_consistent_slot_passes(self, layout):
        report = build_verifier(layout).verify()
        assert report.ok
        assert report.errors == []
        assert report.warnings == []
        assert statuses(report)["Ahead/behind"] == CheckStatus.PASSED

    def test_missing_directory_skips_the_rest(self, tmp_path):
        verifier = SlotVerifier("app", tmp_path / "app", "app-9", tmp_path / "app-9", None, MagicMock())
        report = verifier.verify()
        assert [c.status for c in report.checks] == [CheckStatus.FAILED, CheckStatus.SKIPPED]
        assert "orphans --prune" in report.checks[0].fix_action

    def test_branch_mismatch_is_an_error(self, layout):
        verifier = build_verifier(layout, slot_git=make_git(branch="feature"))
        report = verifier.verify()
        assert statuses(report)["Registry branch"] == CheckStatus.FAILED
        assert not report.ok

    def test_wrong_number_and_project(self, layout):
        record = SlotRecord(project="other", number=4, branch="slot-1")
        report = build_verifier(layout, record=record).verify()
        assert statuses(report)["Registry project"] == CheckStatus.FAILED
        assert statuses(report)["Registry number"] == CheckStatus.FAILED

    def test_unregistered_slot(self, layout):
        verifier = build_verifier(layout)
        verifier.record = None
        assert statuses(verifier.verify())["Registry"] == CheckStatus.FAILED

    def test_behind_is_a_warning(self, layout):
        verifier = build_verifier(layout)
        verifier.git_factory(layout[1]).ahead_behind.return_value = (0, 3)
        report = verifier.verify()
        assert report.ok
        assert len(report.warnings) == 1
        assert report.warnings[0].fix_action == "slot sync app-1"

    def test_foreign_repository(self, layout, tmp_path):
        verifier = build_verifier(layout)
        verifier.git_factory(layout[1]).common_dir.return_value = tmp_path / "elsewhere" / ".git"
        assert statuses(verifier.verify())["Project link"] == CheckStatus.FAILED

    def test_slot_sharing_project_database_warns(self, layout):
        project, slot = layout
        (project / ".env").write_text("DATABASE_URL=postgres://app:pw@localhost:5432/app\n")
        (slot / ".env").write_text("DATABASE_URL=postgres://app:pw@localhost:5432/app\n")

        report = build_verifier(layout).verify()

        databases = next(c for c in report.checks if c.name == "Databases")
        assert databases.status == CheckStatus.WARNING
        assert "5432 (.env)" in databases.message
        assert databases.fix_action == "slot fix-ports app-1"
        assert report.ok

    def test_slot_with_own_database_passes(self, layout):
        project, slot = layout
        (project / ".env").write_text("POSTGRES_PORT=5432\n")
        (slot / ".env").write_text("POSTGRES_PORT=5433\n")
        assert statuses(build_verifier(layout).verify())["Databases"] == CheckStatus.PASSED

    def test_no_database_settings_skipped(self, layout):
        assert statuses(build_verifier(layout).verify())["Databases"] == CheckStatus.SKIPPED

    def test_no_merge_base(self, layout):
        verifier = build_verifier(layout)
        verifier.git_factory(layout[1]).merge_base.return_value = None
        assert statuses(verifier.verify())["Merge base"] == CheckStatus.FAILED


class TestCheckStructure:
    def test_worktree_with_branch(self, layout):
        report = build_verifier(layout).check_structure()
        assert [c.name for c in report.checks] == ["Directory", "Worktree", "Branch"]
        assert report.ok

    def test_git_directory_is_not_a_worktree(self, layout):
        _, slot = layout
        (slot / ".git").unlink()
        (slot / ".git").mkdir()
        report = build_verifier(layout).check_structure()
        assert statuses(report)["Worktree"] == CheckStatus.FAILED

    def test_detached_head(self, layout):
        report = build_verifier(layout, slot_git=make_git(branch=None)).check_structure()
        assert statuses(report)["Branch"] == CheckStatus.FAILED
