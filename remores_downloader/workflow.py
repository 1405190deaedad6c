"""High-level workflow orchestration for downloading booked students' submissions."""

from __future__ import annotations

import threading

import requests

from remores_downloader.canvas_client import CanvasClient
from remores_downloader.configs import Config
from remores_downloader.downloader import download_all
from remores_downloader.errors import ApiError
from remores_downloader.matching import match_all
from remores_downloader.models import DownloadOutcome, DownloadStatus, MatchResult
from remores_downloader.reporting import build_report, format_summary, save_report
from remores_downloader.scraper import fetch_bookings


def _check_assignment(client: CanvasClient, course_id: int, assignment_id: int) -> str:
    """Return the assignment name, failing the run early if it does not exist.

    Raises:
        ApiError: With a message naming the course and assignment on 404.
    """
    try:
        assignment = client.get_assignment(course_id, assignment_id)
    except ApiError as e:
        if e.is_not_found:
            raise ApiError(404, f"Assignment {assignment_id} not found in course {course_id}", e.url) from e
        raise
    return assignment.name


def count_failures(outcomes: list[DownloadOutcome]) -> int:
    return sum(1 for o in outcomes if o.status is DownloadStatus.FAILED)


def run(
    config: Config,
    assistant_id: str,
    repository: str,
    course_id: int,
    assignment_id: int,
    client: CanvasClient | None = None,
    remores_session: requests.Session | None = None,
) -> tuple[list[MatchResult], list[DownloadOutcome]]:
    """Main workflow function.

    Scrapes the operator's bookings from REMORES, matches them against the
    students of the Canvas course, downloads each matched student's latest
    submission and prints a per-booking summary.

    Args:
        config: Run configuration, including the Canvas token.
        assistant_id: Operator's KTH id, used to select their booking lists.
        repository: REMORES repository name.
        course_id: Canvas course ID.
        assignment_id: Canvas assignment ID.
        client: Optional preconfigured Canvas client.
        remores_session: Optional requests session for REMORES.

    Returns:
        Match results (one per booking) and download outcomes.

    Raises:
        ScrapeError: If the bookings cannot be fetched.
        ApiError: If the course, assignment or enrollments cannot be fetched.
        OSError: If the output directory cannot be created.
    """
    print(f"Finding bookings for {repository} on REMORES...")
    bookings = fetch_bookings(repository, assistant_id, config.remores, session=remores_session)
    print(f"Found {len(bookings)} bookings")

    # Shared with the client so an interrupt also stops pending retries
    cancel = threading.Event()
    client = client or CanvasClient(config.canvas, config.retry, cancel=cancel)
    print(f"Finding submissions for assignment {assignment_id} in course {course_id} on Canvas...")
    assignment_name = _check_assignment(client, course_id, assignment_id)

    students = client.list_enrollments(course_id)
    matches = match_all(
        bookings,
        students,
        identifier_domain=config.matching.identifier_domain,
        fuzzy_threshold=config.matching.fuzzy_threshold,
    )
    resolved = sum(1 for m in matches if m.canvas_user is not None)
    print(f"Matched {resolved}/{len(matches)} bookings to {len(students)} students")

    output_dir = config.download.output_dir
    print(f"Downloading submissions for '{assignment_name}' to {output_dir}...")
    outcomes = download_all(
        client,
        matches,
        course_id,
        assignment_id,
        output_dir,
        max_workers=config.download.max_workers,
        filename_template=config.download.filename_template,
        identifier_domain=config.matching.identifier_domain,
        cancel=cancel,
    )

    report = build_report(matches, outcomes)
    print()
    print(format_summary(report))

    if config.download.report_path:
        save_report(report, config.download.report_path)

    return matches, outcomes
