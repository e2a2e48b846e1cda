"""CLI entrypoint for ralph-dispatch."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import rich_click as click

from ralph_dispatch import __version__
from ralph_dispatch.controllers import (
    HealthCommand,
    JobEnqueueCommand,
    JobListCommand,
    JobLogsCommand,
    JobRefCommand,
    RalphCliController,
    RepoAddCommand,
    RepoListCommand,
    RepoRefCommand,
    RepoUpdateCommand,
    StatsCommand,
    WorkerCommand,
)
from ralph_dispatch.queue.errors import NotFoundError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = RalphCliController()

JOB_STATUSES = ["pending", "running", "completed", "failed", "cancelled"]
JOB_TRIGGERS = ["chat", "dashboard", "api"]
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]

db_path_option = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)


@click.group()
@click.version_option(version=__version__, prog_name="ralph")
def ralph() -> None:
    """Dispatch coding-agent jobs into Docker sandboxes."""


@ralph.group()
def repos() -> None:
    """Repository registry commands."""


@repos.command("add")
@db_path_option
@click.option("--name", required=True, help="Display name.")
@click.option("--slug", required=True, help="Unique slug; also the workspace directory name.")
@click.option("--git-url", required=True, help="Clone URL (https:// or git@host:path).")
@click.option("--image", "docker_image", required=True, help="Sandbox Docker image.")
@click.option("--branch", default="main", show_default=True, help="Default branch.")
@click.option("--keyword", "keywords", multiple=True, help="Routing keyword. Can be repeated.")
@click.option("--description", default="", help="Free-form description.")
@click.option("--enabled/--disabled", default=True, show_default=True)
def repos_add(  # noqa: PLR0913
    db_path: Path | None,
    name: str,
    slug: str,
    git_url: str,
    docker_image: str,
    branch: str,
    keywords: tuple[str, ...],
    description: str,
    enabled: bool,
) -> None:
    """Register a target repository."""

    _run(
        CONTROLLER.add_repository,
        RepoAddCommand(
            db_path=db_path,
            name=name,
            slug=slug,
            git_url=git_url,
            docker_image=docker_image,
            branch=branch,
            keywords=keywords,
            description=description,
            enabled=enabled,
        ),
    )


@repos.command("list")
@db_path_option
@click.option("--enabled-only", is_flag=True, default=False, help="Hide disabled repositories.")
def repos_list(db_path: Path | None, enabled_only: bool) -> None:
    """List registered repositories."""

    _run(CONTROLLER.list_repositories, RepoListCommand(db_path=db_path, enabled_only=enabled_only))


@repos.command("show")
@db_path_option
@click.argument("ref")
def repos_show(db_path: Path | None, ref: str) -> None:
    """Show one repository by slug or id."""

    _run(CONTROLLER.show_repository, RepoRefCommand(db_path=db_path, ref=ref))


@repos.command("update")
@db_path_option
@click.argument("ref")
@click.option("--name", default=None)
@click.option("--slug", default=None)
@click.option("--git-url", default=None)
@click.option("--image", "docker_image", default=None)
@click.option("--branch", default=None)
@click.option(
    "--keyword",
    "keywords",
    multiple=True,
    help="Replace keywords. Can be repeated.",
)
@click.option("--description", default=None)
@click.option("--enabled/--disabled", default=None)
def repos_update(  # noqa: PLR0913
    db_path: Path | None,
    ref: str,
    name: str | None,
    slug: str | None,
    git_url: str | None,
    docker_image: str | None,
    branch: str | None,
    keywords: tuple[str, ...],
    description: str | None,
    enabled: bool | None,
) -> None:
    """Update selected fields of a repository."""

    _run(
        CONTROLLER.update_repository,
        RepoUpdateCommand(
            db_path=db_path,
            ref=ref,
            name=name,
            slug=slug,
            git_url=git_url,
            docker_image=docker_image,
            branch=branch,
            keywords=keywords or None,
            description=description,
            enabled=enabled,
        ),
    )


@repos.command("delete")
@db_path_option
@click.argument("ref")
def repos_delete(db_path: Path | None, ref: str) -> None:
    """Delete a repository; its jobs stay in the queue."""

    _run(CONTROLLER.delete_repository, RepoRefCommand(db_path=db_path, ref=ref))


@ralph.group()
def jobs() -> None:
    """Job queue commands."""


@jobs.command("enqueue")
@db_path_option
@click.option("--repo", "repo_ref", required=True, help="Repository slug or id.")
@click.option(
    "--prd",
    "prd_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    required=True,
    help="Task document (prd.json) to run.",
)
@click.option(
    "--priority",
    type=int,
    default=100,
    show_default=True,
    help="Lower runs first.",
)
@click.option(
    "--max-iterations",
    type=click.IntRange(min=1),
    default=None,
    help="Iteration ceiling; defaults to RALPH_DEFAULT_MAX_ITERATIONS.",
)
@click.option(
    "--triggered-by",
    type=click.Choice(JOB_TRIGGERS, case_sensitive=False),
    default="api",
    show_default=True,
)
def jobs_enqueue(  # noqa: PLR0913
    db_path: Path | None,
    repo_ref: str,
    prd_path: Path,
    priority: int,
    max_iterations: int | None,
    triggered_by: str,
) -> None:
    """Enqueue a job for a repository."""

    _run(
        CONTROLLER.enqueue,
        JobEnqueueCommand(
            db_path=db_path,
            repo_ref=repo_ref,
            prd_path=prd_path,
            priority=priority,
            max_iterations=max_iterations,
            triggered_by=triggered_by.lower(),
        ),
    )


@jobs.command("list")
@db_path_option
@click.option(
    "--status",
    type=click.Choice(JOB_STATUSES, case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max jobs to print.",
)
def jobs_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List jobs, newest first (queue order when filtered by status)."""

    _run(CONTROLLER.list_jobs, JobListCommand(db_path=db_path, status=status, limit=limit))


@jobs.command("inspect")
@db_path_option
@click.argument("job_id")
def jobs_inspect(db_path: Path | None, job_id: str) -> None:
    """Show one job with its task document progress."""

    _run(CONTROLLER.inspect_job, JobRefCommand(db_path=db_path, job_id=job_id))


@jobs.command("logs")
@db_path_option
@click.argument("job_id")
@click.option("--iteration", type=click.IntRange(min=0), default=None)
@click.option(
    "--after-id",
    type=click.IntRange(min=0),
    default=None,
    help="Only lines with a larger log id.",
)
@click.option("--limit", type=click.IntRange(min=1), default=None)
def jobs_logs(
    db_path: Path | None,
    job_id: str,
    iteration: int | None,
    after_id: int | None,
    limit: int | None,
) -> None:
    """Print captured container output."""

    _run(
        CONTROLLER.logs,
        JobLogsCommand(
            db_path=db_path,
            job_id=job_id,
            iteration=iteration,
            after_id=after_id,
            limit=limit,
        ),
    )


@jobs.command("cancel")
@db_path_option
@click.argument("job_id")
def jobs_cancel(db_path: Path | None, job_id: str) -> None:
    """Cancel a pending or running job."""

    _run(CONTROLLER.cancel, JobRefCommand(db_path=db_path, job_id=job_id))


@jobs.command("delete")
@db_path_option
@click.argument("job_id")
def jobs_delete(db_path: Path | None, job_id: str) -> None:
    """Delete a job and its logs."""

    _run(CONTROLLER.delete_job, JobRefCommand(db_path=db_path, job_id=job_id))


@jobs.command("stats")
@db_path_option
def jobs_stats(db_path: Path | None) -> None:
    """Show job counts per status."""

    _run(CONTROLLER.stats, StatsCommand(db_path=db_path))


@ralph.command("health")
@db_path_option
def health(db_path: Path | None) -> None:
    """Report database, Docker daemon and queue status."""

    _run(CONTROLLER.health, HealthCommand(db_path=db_path))


@ralph.command("worker")
@db_path_option
@click.option(
    "--once/--loop",
    default=False,
    show_default=True,
    help="Run one claim-execute cycle or poll until stopped.",
)
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for processed jobs in loop mode.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=None,
    help="Exit after this many consecutive empty polls.",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="INFO",
    show_default=True,
)
def worker(
    db_path: Path | None,
    once: bool,
    max_jobs: int | None,
    max_idle_polls: int | None,
    log_level: str,
) -> None:
    """Run the job worker."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _run(
        CONTROLLER.run_worker,
        WorkerCommand(
            db_path=db_path,
            once=once,
            max_jobs=max_jobs,
            max_idle_polls=max_idle_polls,
        ),
    )


def _run(handler: Callable[[Any], list[str]], command: object) -> None:
    try:
        lines = handler(command)
    except (NotFoundError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    ralph()
