"""Command-line interface for the REMORES submission downloader."""

from __future__ import annotations

from pathlib import Path

import click

from remores_downloader.canvas_client import CanvasClient
from remores_downloader.configs import Config, load_config
from remores_downloader.errors import ApiError, ScrapeError
from remores_downloader.workflow import count_failures, run

TOKEN_HELP = "Canvas API token, can be obtained from https://canvas.kth.se/profile/settings"


def _load(ctx: click.Context) -> Config:
    """Build the run configuration from the config file and the token option."""
    config = load_config(ctx.obj["config_path"])
    token = ctx.obj["token"]
    if not token:
        raise click.ClickException(f"CANVAS_API_TOKEN is not set. {TOKEN_HELP}.")
    config.canvas.api_token = token
    return config


def _api_failure(error: ApiError, not_found: str) -> click.ClickException:
    if error.is_not_found:
        return click.ClickException(not_found)
    if error.is_auth:
        return click.ClickException(f"Canvas rejected the API token ({error}). {TOKEN_HELP}.")
    return click.ClickException(f"Canvas request failed: {error}")


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--canvas-api-token", envvar="CANVAS_API_TOKEN", show_envvar=True, help=TOKEN_HELP)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Optional YAML configuration file.",
)
@click.pass_context
def main(ctx: click.Context, canvas_api_token: str | None, config_path: Path | None) -> None:
    """Download Canvas submissions of the students who booked you on REMORES."""
    ctx.ensure_object(dict)
    ctx.obj["token"] = canvas_api_token
    ctx.obj["config_path"] = config_path


@main.command("list-courses")
@click.pass_context
def list_courses(ctx: click.Context) -> None:
    """List courses on Canvas where you are a teacher or a TA."""
    config = _load(ctx)
    client = CanvasClient(config.canvas, config.retry)
    print("Finding courses on Canvas...")
    try:
        courses = client.list_courses()
    except ApiError as e:
        raise _api_failure(e, "Course list not found") from e

    print("Available courses:")
    for course in courses:
        print(f"  {course.id}: {course.name}")


@main.command("list-assignments")
@click.argument("course_id", type=int)
@click.pass_context
def list_assignments(ctx: click.Context, course_id: int) -> None:
    """List the assignments of a Canvas course."""
    config = _load(ctx)
    client = CanvasClient(config.canvas, config.retry)
    print(f"Finding assignments for course {course_id} on Canvas...")
    try:
        assignments = client.list_assignments(course_id)
    except ApiError as e:
        raise _api_failure(e, f"Course {course_id} not found on Canvas") from e

    print("Available assignments:")
    for assignment in assignments:
        due = f"{assignment.due_at:%Y-%m-%d %H:%M}" if assignment.due_at else "no due date"
        print(f"  {assignment.id}: {assignment.name} ({due})")


@main.command()
@click.argument("folder", required=False, type=click.Path(file_okay=False, path_type=Path))
@click.option("-k", "--kth-id", required=True, help="Your KTH ID, eg. `asalamon`.")
@click.option("-r", "--repo", required=True, help="The REMORES repository name.")
@click.option("-c", "--course", "course_id", required=True, type=int, help="The Canvas course ID.")
@click.option("-a", "--assignment", "assignment_id", required=True, type=int, help="The Canvas assignment ID.")
@click.option(
    "-o",
    "--output",
    type=click.Path(file_okay=False, path_type=Path),
    help="The folder to download the submissions to (default: downloads).",
)
@click.option("--max-workers", type=click.IntRange(min=1), help="Number of students downloaded concurrently.")
@click.option("--max-failures", type=click.IntRange(min=0), help="Failed downloads tolerated before exiting nonzero.")
@click.option("--fuzzy-threshold", type=click.FloatRange(0, 1, min_open=True), help="Enable fuzzy name matching.")
@click.option("--report", type=click.Path(dir_okay=False, path_type=Path), help="Write a .yaml/.csv report.")
@click.pass_context
def download(
    ctx: click.Context,
    folder: Path | None,
    kth_id: str,
    repo: str,
    course_id: int,
    assignment_id: int,
    output: Path | None,
    max_workers: int | None,
    max_failures: int | None,
    fuzzy_threshold: float | None,
    report: Path | None,
) -> None:
    """Download submissions from Canvas, matching bookings from REMORES."""
    config = _load(ctx)
    if output or folder:
        config.download.output_dir = output or folder
    if max_workers is not None:
        config.download.max_workers = max_workers
    if max_failures is not None:
        config.download.max_failures = max_failures
    if fuzzy_threshold is not None:
        config.matching.fuzzy_threshold = fuzzy_threshold
    if report is not None:
        config.download.report_path = report

    try:
        _, outcomes = run(config, kth_id, repo, course_id, assignment_id)
    except ScrapeError as e:
        raise click.ClickException(f"Could not read bookings from REMORES: {e}") from e
    except ApiError as e:
        raise _api_failure(e, f"{e.message} (course {course_id}, assignment {assignment_id})") from e
    except KeyboardInterrupt:
        print("Interrupted, unfinished downloads were removed.")
        raise click.exceptions.Exit(130)

    failures = count_failures(outcomes)
    if failures > config.download.max_failures:
        raise click.ClickException(
            f"{failures} download(s) failed (tolerance {config.download.max_failures})"
        )


@main.command("help")
@click.argument("command", required=False)
@click.pass_context
def help_command(ctx: click.Context, command: str | None) -> None:
    """Show usage for the tool or for one command."""
    parent = ctx.find_root()
    if command is None:
        print(parent.get_help())
        return

    cmd = main.get_command(parent, command)
    if cmd is None:
        raise click.UsageError(f"No such command '{command}'.", ctx=parent)
    print(cmd.get_help(click.Context(cmd, info_name=command, parent=parent)))


if __name__ == "__main__":
    main()
