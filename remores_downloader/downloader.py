"""Submission download orchestration."""

from __future__ import annotations

import re
import threading
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import closing
from pathlib import Path

from tqdm import tqdm

from remores_downloader.canvas_client import CanvasClient
from remores_downloader.configs import DEFAULT_FILENAME_TEMPLATE, DEFAULT_MAX_WORKERS
from remores_downloader.errors import ApiError, DownloadCancelled
from remores_downloader.models import (
    Attachment,
    BookingRecord,
    DownloadOutcome,
    DownloadStatus,
    MatchResult,
    Submission,
)

ALREADY_EXISTS = "already_exists"
NO_SUBMISSION = "no_submission"
NO_ATTACHMENTS = "no_attachments"
UNMATCHED_BOOKING = "unmatched_booking"
CANCELLED = "cancelled"
UNEXPECTED_ERROR = "unexpected_error"


def sanitize_filename(name: str, max_length: int = 120) -> str:
    """Make a string safe to use as a single path component.

    Args:
        name: Raw name, e.g. an attachment display name.
        max_length: Maximum length of the result.

    Returns:
        Name without path separators, reserved or control characters.
    """
    sanitized = re.sub(r'[<>:"/\\|?*\x00-\x1f]', "_", name)
    sanitized = re.sub(r"\s+", " ", sanitized).strip()
    result = sanitized[:max_length].rstrip("_ ")
    if result in ("", ".", ".."):
        return "unnamed"
    return result


def build_target_filename(
    booking: BookingRecord,
    attachment: Attachment,
    template: str = DEFAULT_FILENAME_TEMPLATE,
    identifier_domain: str | None = None,
) -> str:
    """Deterministic filename for an attachment of a booked student.

    Args:
        booking: The booking the submission belongs to.
        attachment: The attachment being saved.
        template: ``str.format`` template with ``time``, ``identifier``, ``name`` and ``filename``.
        identifier_domain: Domain stripped from the student's e-mail to get their id.

    Returns:
        A single sanitized path component.
    """
    identifier = booking.student_identifier.strip()
    if identifier_domain and identifier.casefold().endswith("@" + identifier_domain.casefold()):
        identifier = identifier[: -len(identifier_domain) - 1]

    filename = template.format(
        time=booking.slot_time,
        identifier=sanitize_filename(identifier),
        name=sanitize_filename(booking.student_display_name),
        filename=sanitize_filename(attachment.display_name),
    )
    return sanitize_filename(filename, max_length=255)


def select_latest_submission(submissions: Sequence[Submission]) -> Submission | None:
    """Most recent submitted attempt; ties on ``submitted_at`` go to the higher attempt number."""
    submitted = [s for s in submissions if s.submitted_at is not None]
    if not submitted:
        return None
    return max(submitted, key=lambda s: (s.submitted_at, s.attempt or 0))


def write_stream(chunks: Iterable[bytes], path: Path, cancel: threading.Event | None = None) -> int:
    """Write chunks to a new file, removing it again if anything goes wrong.

    The file is created exclusively, so an existing file is never overwritten.

    Args:
        chunks: File content.
        path: Target path; must not exist.
        cancel: When set, writing stops with DownloadCancelled.

    Returns:
        Number of bytes written.

    Raises:
        FileExistsError: If ``path`` already exists. The existing file is left untouched.
        DownloadCancelled: If ``cancel`` was set during the transfer.
    """
    f = open(path, "xb")
    written = 0
    try:
        with f:
            for chunk in chunks:
                if cancel is not None and cancel.is_set():
                    raise DownloadCancelled(f"Download of {path.name} was cancelled")
                f.write(chunk)
                written += len(chunk)
    except BaseException:
        path.unlink(missing_ok=True)
        raise
    return written


class _ClaimedPaths:
    """Target paths handed out during one run."""

    def __init__(self) -> None:
        self._paths: set[Path] = set()
        self._lock = threading.Lock()

    def claim(self, path: Path) -> bool:
        with self._lock:
            if path in self._paths:
                return False
            self._paths.add(path)
            return True


def _failed(booking: BookingRecord, reason: str, submission: Submission | None = None) -> DownloadOutcome:
    return DownloadOutcome(booking=booking, submission=submission, status=DownloadStatus.FAILED, reason=reason)


def _download_attachment(
    client: CanvasClient,
    booking: BookingRecord,
    submission: Submission,
    attachment: Attachment,
    path: Path,
    cancel: threading.Event,
) -> DownloadOutcome:
    outcome = DownloadOutcome(
        booking=booking,
        submission=submission,
        attachment=attachment,
        target_path=path,
        status=DownloadStatus.FAILED,
    )
    try:
        with closing(client.download_attachment(attachment)) as chunks:
            write_stream(chunks, path, cancel)
    except FileExistsError:
        outcome.status = DownloadStatus.SKIPPED
        outcome.reason = ALREADY_EXISTS
    except DownloadCancelled:
        outcome.reason = CANCELLED
    except ApiError as e:
        outcome.reason = f"download_failed: {e}"
    except OSError as e:
        outcome.reason = f"io_error: {e}"
    except Exception as e:
        outcome.reason = f"{UNEXPECTED_ERROR}: {e}"
    else:
        outcome.status = DownloadStatus.WRITTEN
    return outcome


def _download_match(
    client: CanvasClient,
    match: MatchResult,
    course_id: int | str,
    assignment_id: int | str,
    target_dir: Path,
    filename_template: str,
    identifier_domain: str | None,
    claimed: _ClaimedPaths,
    cancel: threading.Event,
) -> list[DownloadOutcome]:
    booking = match.booking
    if cancel.is_set():
        return [_failed(booking, CANCELLED)]
    if match.canvas_user is None:
        return [_failed(booking, UNMATCHED_BOOKING)]

    try:
        submissions = client.list_submissions(course_id, assignment_id, match.canvas_user.id)
    except DownloadCancelled:
        return [_failed(booking, CANCELLED)]
    except ApiError as e:
        return [_failed(booking, f"api_error: {e}")]

    submission = select_latest_submission(submissions)
    if submission is None:
        return [_failed(booking, NO_SUBMISSION)]
    if not submission.attachments:
        return [_failed(booking, NO_ATTACHMENTS, submission)]

    outcomes: list[DownloadOutcome] = []
    for attachment in submission.attachments:
        if cancel.is_set():
            outcomes.append(_failed(booking, CANCELLED, submission))
            break
        path = target_dir / build_target_filename(booking, attachment, filename_template, identifier_domain)
        if not claimed.claim(path):
            # Another booking of this run computed the same name; keep its file
            print(f"Warning: {path} is already claimed by another booking, skipping")
            outcomes.append(
                DownloadOutcome(
                    booking=booking,
                    submission=submission,
                    attachment=attachment,
                    status=DownloadStatus.SKIPPED,
                    reason=ALREADY_EXISTS,
                )
            )
            continue
        outcomes.append(_download_attachment(client, booking, submission, attachment, path, cancel))
    return outcomes


def download_all(
    client: CanvasClient,
    matches: Sequence[MatchResult],
    course_id: int | str,
    assignment_id: int | str,
    target_dir: Path,
    max_workers: int = DEFAULT_MAX_WORKERS,
    filename_template: str = DEFAULT_FILENAME_TEMPLATE,
    identifier_domain: str | None = None,
    cancel: threading.Event | None = None,
) -> list[DownloadOutcome]:
    """Download the latest submission of every matched booking.

    Students are processed by a bounded thread pool. Per-student problems (unmatched
    booking, missing submission, failed transfer, existing file) become outcomes
    instead of exceptions, so one bad booking does not stop the run.

    Args:
        client: Canvas API client.
        matches: Match results, one per booking.
        course_id: Canvas course ID.
        assignment_id: Canvas assignment ID.
        target_dir: Directory to write files to; created if missing.
        max_workers: Maximum number of students downloaded concurrently.
        filename_template: Template passed to build_target_filename.
        identifier_domain: Domain stripped from student e-mails in filenames.
        cancel: Event that stops new downloads and aborts running ones when set.

    Returns:
        Outcomes ordered by slot time, student and target path. Every non-None
        ``target_path`` appears exactly once.

    Raises:
        KeyboardInterrupt: Re-raised after running transfers have cleaned up.
    """
    target_dir = Path(target_dir)
    target_dir.mkdir(parents=True, exist_ok=True)

    cancel = cancel or threading.Event()
    claimed = _ClaimedPaths()
    outcomes: list[DownloadOutcome] = []

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            executor.submit(
                _download_match,
                client,
                match,
                course_id,
                assignment_id,
                target_dir,
                filename_template,
                identifier_domain,
                claimed,
                cancel,
            ): match
            for match in matches
        }
        try:
            for future in tqdm(as_completed(futures), total=len(futures), desc="Downloading submissions", unit="student"):
                try:
                    outcomes.extend(future.result())
                except Exception as e:
                    booking = futures[future].booking
                    print(f"Failed to download submissions for {booking.student_identifier}: {e}")
                    outcomes.append(_failed(booking, f"{UNEXPECTED_ERROR}: {e}"))
        except KeyboardInterrupt:
            cancel.set()
            executor.shutdown(wait=True, cancel_futures=True)
            raise

    outcomes.sort(key=lambda o: (o.booking.slot_time, o.booking.student_identifier, str(o.target_path or "")))
    return outcomes
