"""Type definitions for the REMORES downloader reports."""

from __future__ import annotations

from typing import TypedDict


class StudentInfo(TypedDict):
    """Type definition for the Canvas user a booking was matched to."""

    name: str
    login_id: str
    id: str


class BookingReport(TypedDict):
    """Type definition for one booking's row in the run report."""

    slot_time: str
    name: str
    identifier: str
    match: str
    student: StudentInfo | None
    status: str
    written: list[str]
    skipped: list[str]
    errors: list[str]
