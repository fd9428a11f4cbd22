"""Configuration management for missionforge."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from missionforge.core.models import MergeMethod

CONFIG_DIR_NAME = ".missionforge"
WORKTREE_BASE_ENV = "MISSIONFORGE_WORKTREE_BASE"


class GitHubConfig(BaseModel):
    """Remote hosting settings."""

    repo: str | None = Field(default=None, description="Repository in 'owner/repo' format")
    api_url: str = Field(default="https://api.github.com", description="REST API base URL")
    host: str = Field(default="github.com", description="Git host used for the push remote URL")
    merge_method: MergeMethod = Field(default=MergeMethod.SQUASH, description="Default PR merge method")
    timeout: float = Field(default=30.0, description="HTTP request timeout in seconds")


class Config(BaseModel):
    """missionforge configuration.

    Worktree settings:
        repo_root: The main clone that owns the worktrees (default: cwd)
        worktree_base: Directory holding one worktree per mission
            (default: a sibling of repo_root named <repo>-worktrees)
    """

    repo_root: Path | None = Field(default=None, description="Main git clone (default: current directory)")
    worktree_base: Path | None = Field(default=None, description="Directory for mission worktrees")
    default_base_branch: str = Field(default="main", description="Branch missions fork from")
    branch_prefix: str = Field(default="mission/", description="Prefix for derived mission branch names")
    git_timeout: float = Field(default=30.0, description="Timeout for local git commands in seconds")
    push_timeout: float = Field(default=120.0, description="Timeout for git push in seconds")
    capture_diffs: bool = Field(default=False, description="Record before/after file contents on commits")
    remove_worktree_on_complete: bool = Field(
        default=False,
        description="Tear down the worktree once the pull request is merged",
    )
    github: GitHubConfig = Field(default_factory=GitHubConfig)

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """Load configuration from file or use defaults."""
        if config_path is None:
            config_path = Path(CONFIG_DIR_NAME) / "config.yaml"

        if config_path.exists():
            with config_path.open() as f:
                data = yaml.safe_load(f) or {}
            config = cls.model_validate(data)
        else:
            config = cls()

        env_base = os.getenv(WORKTREE_BASE_ENV)
        if env_base:
            config.worktree_base = Path(env_base)
        return config

    def save(self, config_path: Path) -> None:
        """Save configuration to file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with config_path.open("w") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False)

    def resolved_repo_root(self) -> Path:
        return (self.repo_root or Path.cwd()).resolve()

    def resolved_worktree_base(self) -> Path:
        """Absolute worktree base directory."""
        if self.worktree_base is not None:
            return self.worktree_base.expanduser().resolve()
        root = self.resolved_repo_root()
        return root.parent / f"{root.name}-worktrees"


def get_missionforge_dir(project_root: Path | None = None) -> Path:
    """Get the .missionforge directory, creating if needed."""
    if project_root is None:
        project_root = Path.cwd()
    state_dir = project_root / CONFIG_DIR_NAME
    state_dir.mkdir(parents=True, exist_ok=True)
    return state_dir
