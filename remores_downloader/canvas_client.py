"""Canvas REST API client: courses, assignments, enrollments, submissions and attachments."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from typing import Any, TypeVar

import requests

from remores_downloader.configs import CanvasConfig, RetryConfig
from remores_downloader.errors import ApiError, DownloadCancelled
from remores_downloader.models import Assignment, Attachment, CanvasUser, Course, Submission

GRADING_TYPES = ("pass_fail", "points", "letter_grade")
DOWNLOAD_CHUNK_SIZE = 8192

T = TypeVar("T")


class CanvasClient:
    """Authenticated access to the Canvas API.

    Every request carries the operator's token as a bearer credential. Transient
    failures (connection errors, 429 and 5xx) are retried with exponential backoff;
    any other non-2xx response raises ApiError immediately.
    """

    def __init__(
        self,
        config: CanvasConfig,
        retry: RetryConfig | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], Any] | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        if not config.api_token:
            raise ValueError("Canvas API token is required")
        self.config = config
        self.retry = retry or RetryConfig()
        self.session = session or requests.Session()
        self.session.headers["Authorization"] = f"Bearer {config.api_token}"
        self.session.headers["Accept"] = "application/json"
        self.cancel = cancel or threading.Event()
        # Waiting on the cancel event wakes a backoff as soon as the run is interrupted
        self._sleep = sleep or self.cancel.wait

    def _url(self, path: str) -> str:
        return f"{self.config.api_url}/{path.lstrip('/')}"

    def _request(self, url: str, params: Any = None, stream: bool = False) -> requests.Response:
        """GET a URL, retrying transient failures.

        Args:
            url: Absolute URL.
            params: Query parameters.
            stream: Whether to stream the response body.

        Returns:
            A successful response.

        Raises:
            ApiError: On a non-retryable failure, or once retries are exhausted.
            DownloadCancelled: If the cancel event is set before a retry.
        """
        attempts = self.retry.max_attempts
        for attempt in range(1, attempts + 1):
            retry_after: float | None = None
            try:
                response = self.session.get(url, params=params, stream=stream, timeout=self.config.timeout_seconds)
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                error = ApiError(None, str(e), url)
            except requests.exceptions.RequestException as e:
                # Malformed URLs, redirect loops and the like do not improve on retry
                error = ApiError(None, str(e), url, retryable=False)
            else:
                if response.ok:
                    return response
                error = ApiError(response.status_code, _error_message(response), url)
                if response.status_code == 429:
                    retry_after = _retry_after(response)
                response.close()

            if not error.is_transient or attempt == attempts:
                raise error

            delay = self.retry.delay_for(attempt)
            if retry_after is not None:
                delay = min(retry_after, self.retry.max_backoff_seconds)
            self._check_cancelled(url)
            print(f"Warning: {error}; retrying in {delay:.1f}s (attempt {attempt}/{attempts})")
            self._sleep(delay)
            self._check_cancelled(url)

        raise ApiError(None, "no request attempts configured", url, retryable=False)

    def _check_cancelled(self, url: str) -> None:
        if self.cancel.is_set():
            raise DownloadCancelled(f"Cancelled before retrying {url}")

    def _get_json(self, path: str, params: Any = None) -> Any:
        url = self._url(path)
        return _decode_json(self._request(url, params=params), url)

    def _paginate(self, path: str, params: list[tuple[str, Any]] | None = None) -> Iterator[dict[str, Any]]:
        """Lazily yield the items of a paginated list endpoint.

        Pages are requested on demand by following the ``Link: rel="next"`` header.
        The next URL already carries the query string, so params are only sent once.
        """
        url: str | None = self._url(path)
        page_params: list[tuple[str, Any]] | None = [*(params or []), ("per_page", self.config.per_page)]
        while url:
            response = self._request(url, params=page_params)
            data = _decode_json(response, url)
            if isinstance(data, list):
                yield from data
            elif data:
                yield data
            url = response.links.get("next", {}).get("url")
            page_params = None

    def list_courses(self) -> list[Course]:
        """List courses where the operator is not enrolled as a student, newest first."""
        courses = [_parse(Course.from_api, data, self._url("courses")) for data in self._paginate("courses")]
        courses = [c for c in courses if any(t != "student" for t in c.enrollment_types)]
        oldest = datetime.min.replace(tzinfo=timezone.utc)
        courses.sort(key=lambda c: c.created_at or oldest, reverse=True)
        return courses

    def list_assignments(self, course_id: int | str) -> list[Assignment]:
        """List published, graded assignments of a course by due date (undated last).

        Raises:
            ApiError: With status 404 if the course does not exist.
        """
        path = f"courses/{course_id}/assignments"
        assignments = [_parse(Assignment.model_validate, data, self._url(path)) for data in self._paginate(path)]
        assignments = [a for a in assignments if a.published and a.grading_type in GRADING_TYPES]
        assignments.sort(key=lambda a: (a.due_at is None, a.due_at or datetime.min.replace(tzinfo=timezone.utc)))
        return assignments

    def get_assignment(self, course_id: int | str, assignment_id: int | str) -> Assignment:
        path = f"courses/{course_id}/assignments/{assignment_id}"
        return _parse(Assignment.model_validate, self._get_json(path), self._url(path))

    def list_enrollments(self, course_id: int | str) -> list[CanvasUser]:
        """List the students enrolled in a course."""
        path = f"courses/{course_id}/users"
        return [
            _parse(CanvasUser.model_validate, data, self._url(path))
            for data in self._paginate(path, [("enrollment_type[]", "student")])
        ]

    def list_submissions(
        self, course_id: int | str, assignment_id: int | str, user_id: int | str
    ) -> list[Submission]:
        """List every submitted attempt of a user for an assignment.

        Unsubmitted placeholders (no ``submitted_at``) are left out, so an empty list
        means the student has not handed anything in.
        """
        path = f"courses/{course_id}/assignments/{assignment_id}/submissions/{user_id}"
        data = self._get_json(path, params=[("include[]", "submission_history")])

        def build(data: dict[str, Any]) -> list[Submission]:
            history = data.get("submission_history") or [data]
            return [Submission.model_validate({"user_id": data.get("user_id", user_id), **entry}) for entry in history]

        submissions = _parse(build, data, self._url(path))
        return [s for s in submissions if s.submitted_at is not None]

    def download_attachment(self, attachment: Attachment | str) -> Iterator[bytes]:
        """Stream the bytes of an attachment.

        The response is opened when iteration starts and closed when the iterator is
        exhausted or closed.

        Args:
            attachment: Attachment or its download URL.

        Yields:
            Non-empty chunks of the file content.

        Raises:
            ApiError: If the request fails or the connection drops mid-transfer.
        """
        url = attachment.url if isinstance(attachment, Attachment) else attachment
        response = self._request(url, stream=True)
        with response:
            try:
                for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    if chunk:
                        yield chunk
            except requests.exceptions.RequestException as e:
                raise ApiError(None, f"transfer interrupted: {e}", url, retryable=False) from e


def _decode_json(response: requests.Response, url: str) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise ApiError(response.status_code, f"response is not valid JSON: {e}", url, retryable=False) from e


def _parse(factory: Callable[[Any], T], data: Any, url: str) -> T:
    """Build a model from a Canvas payload, reporting malformed payloads as ApiError."""
    try:
        return factory(data)
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise ApiError(None, f"unexpected response from Canvas: {e}", url, retryable=False) from e


def _error_message(response: requests.Response) -> str:
    """Best-effort extraction of Canvas' error text."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason or ""
    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return str(errors[0].get("message", ""))
        if "message" in body:
            return str(body["message"])
    return str(body)[:200]


def _retry_after(response: requests.Response) -> float | None:
    value = response.headers.get("Retry-After")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None
