"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from missionforge.config import Config, get_missionforge_dir
from missionforge.core.models import MergeMethod


@pytest.fixture(autouse=True)
def _no_env_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MISSIONFORGE_WORKTREE_BASE", raising=False)


class TestConfigLoad:
    """Tests for Config.load."""

    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        config = Config.load(tmp_path / "nope.yaml")

        assert config.default_base_branch == "main"
        assert config.branch_prefix == "mission/"
        assert config.capture_diffs is False
        assert config.github.merge_method == MergeMethod.SQUASH

    def test_yaml_values(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            "default_base_branch: develop\n"
            "capture_diffs: true\n"
            "github:\n"
            "  repo: owner/repo\n"
            "  merge_method: rebase\n"
        )

        config = Config.load(path)

        assert config.default_base_branch == "develop"
        assert config.capture_diffs is True
        assert config.github.repo == "owner/repo"
        assert config.github.merge_method == MergeMethod.REBASE

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert Config.load(path).push_timeout == 120.0

    def test_env_overrides_worktree_base(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("worktree_base: /from/file\n")
        monkeypatch.setenv("MISSIONFORGE_WORKTREE_BASE", str(tmp_path / "from-env"))

        config = Config.load(path)

        assert config.resolved_worktree_base() == (tmp_path / "from-env").resolve()

    def test_save_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "sub" / "config.yaml"
        Config(branch_prefix="feat/", worktree_base=tmp_path / "wt").save(path)

        loaded = Config.load(path)

        assert loaded.branch_prefix == "feat/"
        assert loaded.worktree_base == tmp_path / "wt"


class TestResolvedPaths:
    """Tests for derived directories."""

    def test_default_worktree_base_is_sibling(self, tmp_path: Path) -> None:
        config = Config(repo_root=tmp_path / "myrepo")
        assert config.resolved_worktree_base() == (tmp_path / "myrepo-worktrees").resolve()

    def test_get_missionforge_dir_creates_directory(self, tmp_path: Path) -> None:
        state_dir = get_missionforge_dir(tmp_path)
        assert state_dir == tmp_path / ".missionforge"
        assert state_dir.is_dir()
