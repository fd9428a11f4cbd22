"""CLI interface for missionforge."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from missionforge import __version__
from missionforge.config import Config, get_missionforge_dir
from missionforge.core.errors import MissionError
from missionforge.core.lifecycle import MissionLifecycleController
from missionforge.core.models import FileSpec, MergeMethod, MissionPriority, MissionStatus
from missionforge.core.state import SQLiteMissionRepository
from missionforge.sync.github_client import TOKEN_ENV, RemoteCredentials

T = TypeVar("T")

app = typer.Typer(
    name="missionforge",
    help="Run missions on dedicated git worktrees and ship them as pull requests.",
    no_args_is_help=True,
)
console = Console()

STATUS_COLORS = {
    MissionStatus.PLANNING: "dim",
    MissionStatus.ACTIVE: "blue",
    MissionStatus.REVIEW: "cyan",
    MissionStatus.MERGING: "magenta",
    MissionStatus.COMPLETED: "green",
    MissionStatus.ABANDONED: "yellow",
}

TokenOption = Annotated[
    str | None,
    typer.Option("--token", envvar=TOKEN_ENV, help="GitHub token (default: $GITHUB_TOKEN)", show_default=False),
]
RepoOption = Annotated[
    str | None,
    typer.Option("--repo", help="Repository as owner/repo (default: github.repo from config)"),
]


def _config(ctx: typer.Context) -> Config:
    return ctx.obj["config"]


def _controller(ctx: typer.Context) -> MissionLifecycleController:
    config = _config(ctx)
    repository = SQLiteMissionRepository(get_missionforge_dir(config.resolved_repo_root()) / "missions.db")
    return MissionLifecycleController.from_config(config, repository)


def _credentials(ctx: typer.Context, repo: str | None, token: str | None) -> RemoteCredentials:
    return RemoteCredentials.from_slug(repo or _config(ctx).github.repo, token)


def _run(factory: Callable[[], Coroutine[Any, Any, T]]) -> T:
    """Run an async intent, turning mission errors into a red message and exit code 1."""
    try:
        return asyncio.run(factory())
    except MissionError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None


def _status_text(status: MissionStatus) -> str:
    color = STATUS_COLORS.get(status, "white")
    return f"[{color}]{status.value}[/{color}]"


def _parse_file_args(file_args: list[str]) -> list[FileSpec]:
    """Turn REPO_PATH=LOCAL_FILE pairs into FileSpecs."""
    specs: list[FileSpec] = []
    for arg in file_args:
        target, sep, source = arg.partition("=")
        if not sep or not target or not source:
            raise typer.BadParameter(f"Expected REPO_PATH=LOCAL_FILE, got {arg!r}", param_hint="--file")
        source_path = Path(source)
        if not source_path.is_file():
            raise typer.BadParameter(f"Local file not found: {source}", param_hint="--file")
        specs.append(FileSpec(path=target, content=source_path.read_text(encoding="utf-8")))
    return specs


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"missionforge {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Config file (default: .missionforge/config.yaml)"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging, including git invocations"),
    ] = False,
    version: Annotated[
        bool,
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show version and exit"),
    ] = False,
) -> None:
    """Load configuration and set up logging."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    ctx.obj = {"config": Config.load(config_path)}


@app.command()
def create(
    ctx: typer.Context,
    mission_id: Annotated[str, typer.Argument(help="Unique mission id (also the worktree directory name)")],
    name: Annotated[str, typer.Argument(help="Mission name")],
    description: Annotated[str, typer.Option("--description", "-d", help="Mission description")] = "",
    priority: Annotated[
        MissionPriority,
        typer.Option("--priority", "-p", help="Mission priority"),
    ] = MissionPriority.MEDIUM,
    branch: Annotated[
        str | None,
        typer.Option("--branch", "-b", help="Branch name (default: mission/<slug of name>)"),
    ] = None,
    base: Annotated[str | None, typer.Option("--base", help="Base branch (default: from config)")] = None,
    task: Annotated[
        list[str] | None,
        typer.Option("--task", "-t", help="Task id to link (repeatable)"),
    ] = None,
) -> None:
    """Register a new mission in planning."""
    controller = _controller(ctx)
    mission = _run(
        lambda: controller.create_mission(
            mission_id,
            name,
            description=description,
            priority=priority,
            branch_name=branch,
            base_branch=base,
            task_ids=task or [],
        )
    )
    console.print(f"[green]Created mission {mission.id}[/green] on branch [bold]{mission.branch_name}[/bold]")


@app.command()
def start(
    ctx: typer.Context,
    mission_id: Annotated[str, typer.Argument(help="Mission id")],
) -> None:
    """Create the mission worktree and branch, and mark the mission active."""
    controller = _controller(ctx)
    mission = _run(lambda: controller.start_mission(mission_id))
    console.print(f"Mission {mission.id}: {_status_text(mission.status)}")
    console.print(f"  Worktree: {mission.worktree_path}")


@app.command()
def commit(
    ctx: typer.Context,
    mission_id: Annotated[str, typer.Argument(help="Mission id")],
    message: Annotated[str, typer.Option("--message", "-m", help="Commit message")],
    file: Annotated[
        list[str] | None,
        typer.Option("--file", "-f", help="REPO_PATH=LOCAL_FILE to write before committing (repeatable)"),
    ] = None,
    diffs: Annotated[
        bool | None,
        typer.Option("--diffs/--no-diffs", help="Record before/after contents (default: from config)"),
    ] = None,
) -> None:
    """Write files into the mission worktree and commit them."""
    specs = _parse_file_args(file or [])
    controller = _controller(ctx)
    result = _run(lambda: controller.write_and_commit(mission_id, specs, message, capture_diffs=diffs))

    if result.no_changes or result.commit is None:
        console.print("[dim]No changes to commit[/dim]")
        return

    console.print(f"[green]Committed {result.commit.sha[:8]}[/green] {result.commit.message}")
    for path in result.commit.files_changed:
        console.print(f"  {path}")


@app.command()
def review(
    ctx: typer.Context,
    mission_id: Annotated[str, typer.Argument(help="Mission id")],
    title: Annotated[str, typer.Option("--title", help="Pull request title")],
    body: Annotated[str, typer.Option("--body", help="Pull request description")] = "",
    repo: RepoOption = None,
    token: TokenOption = None,
) -> None:
    """Push the mission branch and open a pull request."""
    controller = _controller(ctx)
    result = _run(lambda: controller.open_review(mission_id, title, body, _credentials(ctx, repo, token)))
    console.print(f"Mission {mission_id}: {_status_text(result.status)}")
    console.print(f"  Pull request #{result.pull_request_number}: {result.pull_request_url}")


@app.command()
def complete(
    ctx: typer.Context,
    mission_id: Annotated[str, typer.Argument(help="Mission id")],
    method: Annotated[
        MergeMethod | None,
        typer.Option("--method", help="Merge method (default: from config)"),
    ] = None,
    remove_worktree: Annotated[
        bool | None,
        typer.Option("--remove-worktree/--keep-worktree", help="Tear down the worktree after merging"),
    ] = None,
    repo: RepoOption = None,
    token: TokenOption = None,
) -> None:
    """Merge the mission's pull request and mark the mission completed."""
    controller = _controller(ctx)
    result = _run(
        lambda: controller.complete_mission(
            mission_id,
            _credentials(ctx, repo, token),
            merge_method=method,
            remove_worktree=remove_worktree,
        )
    )

    if not result.merged:
        console.print(f"[yellow]Pull request was not merged:[/yellow] {result.message}")
        console.print(f"Mission {mission_id}: {_status_text(result.status)}")
        raise typer.Exit(1)

    console.print(f"Mission {mission_id}: {_status_text(result.status)} ({result.sha})")
    if result.worktree_removal and result.worktree_removal.error:
        console.print(f"[yellow]Worktree cleanup failed:[/yellow] {result.worktree_removal.error}")


@app.command()
def abandon(
    ctx: typer.Context,
    mission_id: Annotated[str, typer.Argument(help="Mission id")],
    remove_worktree: Annotated[
        bool,
        typer.Option("--remove-worktree", help="Remove the mission worktree"),
    ] = False,
    delete_branch: Annotated[
        bool,
        typer.Option("--delete-branch", help="Also delete the local mission branch"),
    ] = False,
) -> None:
    """Abandon a mission, optionally tearing down its worktree."""
    controller = _controller(ctx)
    result = _run(lambda: controller.abandon_mission(mission_id, remove_worktree, delete_branch))
    console.print(f"Mission {mission_id}: {_status_text(result.status)}")

    removal = result.worktree_removal
    if removal is None:
        return
    if not removal.removed:
        console.print(f"[yellow]Worktree not removed:[/yellow] {removal.error}")
    elif removal.error:
        console.print(f"[yellow]Worktree removed, branch kept:[/yellow] {removal.error}")
    else:
        console.print("  Worktree removed" + (f", branch {removal.branch} deleted" if removal.branch_deleted else ""))


@app.command()
def status(
    ctx: typer.Context,
    mission_id: Annotated[str, typer.Argument(help="Mission id")],
    remote: Annotated[
        bool,
        typer.Option("--remote", help="Also fetch the pull request state from GitHub"),
    ] = False,
    repo: RepoOption = None,
    token: TokenOption = None,
) -> None:
    """Show a mission, its worktree and its commits."""
    controller = _controller(ctx)
    report = _run(lambda: controller.get_status(mission_id))
    mission = report.mission
    worktree = report.worktree

    console.print(f"\n[bold]Mission {mission.id}[/bold] - {mission.name}")
    console.print(f"  Status: {_status_text(mission.status)}")
    console.print(f"  Priority: {mission.priority.value}")
    console.print(f"  Branch: {mission.branch_name} (from {mission.base_branch})")
    if mission.task_ids:
        console.print(f"  Tasks: {', '.join(mission.task_ids)}")
    if mission.pull_request_url:
        console.print(f"  Pull request #{mission.pull_request_number}: {mission.pull_request_url}")
        if remote:
            pr = _run(lambda: controller.fetch_pull_request(mission_id, _credentials(ctx, repo, token)))
            console.print(f"  Remote state: {'merged' if pr.merged else pr.state}")

    if worktree.exists:
        dirty = "[yellow]uncommitted changes[/yellow]" if worktree.has_uncommitted_changes else "clean"
        console.print(f"  Worktree: {worktree.worktree_path} ({dirty})")
        console.print(f"  On branch {worktree.branch}, {worktree.commits_ahead_of_base} commit(s) ahead")
    else:
        console.print("  Worktree: [dim]none[/dim]")

    if mission.commits:
        console.print("\n[bold]Commits[/bold]")
        table = Table()
        table.add_column("SHA")
        table.add_column("Message")
        table.add_column("Files")
        table.add_column("When")
        for c in mission.commits:
            table.add_row(c.sha[:8], c.message, str(len(c.files_changed)), c.timestamp.strftime("%Y-%m-%d %H:%M:%S"))
        console.print(table)


@app.command("list")
def list_missions(ctx: typer.Context) -> None:
    """List all missions."""
    controller = _controller(ctx)
    missions = controller.list_missions()

    if not missions:
        console.print("[yellow]No missions found[/yellow]")
        return

    table = Table()
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Priority")
    table.add_column("Status")
    table.add_column("Branch")
    table.add_column("Commits")
    table.add_column("PR")
    for m in missions:
        table.add_row(
            m.id,
            m.name,
            m.priority.value,
            _status_text(m.status),
            m.branch_name,
            str(len(m.commits)),
            f"#{m.pull_request_number}" if m.pull_request_number else "-",
        )
    console.print(table)


@app.command("link-task")
def link_task(
    ctx: typer.Context,
    mission_id: Annotated[str, typer.Argument(help="Mission id")],
    task_id: Annotated[str, typer.Argument(help="Task id")],
) -> None:
    """Link an external task to a mission."""
    controller = _controller(ctx)
    mission = _run(lambda: controller.link_task(mission_id, task_id))
    console.print(f"Mission {mission.id} tasks: {', '.join(mission.task_ids)}")


@app.command("unlink-task")
def unlink_task(
    ctx: typer.Context,
    mission_id: Annotated[str, typer.Argument(help="Mission id")],
    task_id: Annotated[str, typer.Argument(help="Task id")],
) -> None:
    """Unlink an external task from a mission."""
    controller = _controller(ctx)
    mission = _run(lambda: controller.unlink_task(mission_id, task_id))
    console.print(f"Mission {mission.id} tasks: {', '.join(mission.task_ids) or '-'}")


if __name__ == "__main__":
    app()
