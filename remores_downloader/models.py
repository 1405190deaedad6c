"""Data models shared by the scraper, the Canvas client, the matcher and the downloader."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BookingRecord(BaseModel):
    """A single booked slot scraped from REMORES.

    Attributes:
        slot_time: Start of the booked slot.
        student_display_name: Name the student entered when booking.
        student_identifier: E-mail the student entered (KTH address for most students).
        repository: REMORES repository the booking belongs to.
    """

    model_config = ConfigDict(frozen=True)

    slot_time: datetime
    student_display_name: str
    student_identifier: str
    repository: str


class Course(BaseModel):
    id: int
    name: str
    created_at: datetime | None = None
    enrollment_types: list[str] = Field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Course:
        """Build a Course from a Canvas course payload, flattening its enrollments."""
        enrollments = data.get("enrollments") or []
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            created_at=data.get("created_at"),
            enrollment_types=[e.get("type", "") for e in enrollments],
        )


class Assignment(BaseModel):
    id: int
    name: str
    due_at: datetime | None = None
    published: bool = True
    grading_type: str | None = None


class CanvasUser(BaseModel):
    """A student enrolled in a Canvas course."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    login_id: str | None = None
    sis_user_id: str | None = None

    def __str__(self) -> str:
        return f"{self.name} ({self.login_id or self.id})"


class Attachment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int | None = None
    display_name: str
    filename: str | None = None
    url: str
    content_type: str | None = Field(default=None, alias="content-type")


class Submission(BaseModel):
    """One submission attempt by a user for an assignment."""

    user_id: int
    attempt: int | None = None
    submitted_at: datetime | None = None
    attachments: list[Attachment] = Field(default_factory=list)

    @field_validator("attachments", mode="before")
    @classmethod
    def convert_null_attachments(cls, v: Any) -> list[Any]:
        """Canvas sends null for submissions without uploaded files."""
        return v or []


class MatchStatus(str, Enum):
    EXACT = "exact"
    MEDIUM = "medium"
    FUZZY = "fuzzy"
    AMBIGUOUS = "ambiguous"
    NOT_FOUND = "not_found"

    @property
    def resolved(self) -> bool:
        return self in (MatchStatus.EXACT, MatchStatus.MEDIUM, MatchStatus.FUZZY)


class MatchResult(BaseModel):
    """Outcome of resolving one booking to a Canvas user.

    Attributes:
        booking: The booking being resolved.
        canvas_user: The matched user, or None when unresolved.
        status: Confidence of the match, or why it failed.
        candidates: Users that tied when the status is ambiguous.
    """

    booking: BookingRecord
    canvas_user: CanvasUser | None = None
    status: MatchStatus
    candidates: list[CanvasUser] = Field(default_factory=list)


class DownloadStatus(str, Enum):
    WRITTEN = "written"
    SKIPPED = "skipped"
    FAILED = "failed"


class DownloadOutcome(BaseModel):
    """Result of one attempted download (or of a booking that could not be downloaded).

    ``target_path`` is None when no file was ever attempted, e.g. for unmatched bookings.
    """

    booking: BookingRecord
    submission: Submission | None = None
    attachment: Attachment | None = None
    target_path: Path | None = None
    status: DownloadStatus
    reason: str = ""
