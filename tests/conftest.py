"""Shared fixtures for the REMORES downloader tests."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from unittest.mock import MagicMock

import pytest

from remores_downloader.models import BookingRecord, CanvasUser


def make_booking(
    identifier: str,
    name: str,
    slot_time: datetime = datetime(2023, 10, 19, 13, 0),
    repository: str = "adk-mastarprov",
) -> BookingRecord:
    return BookingRecord(
        slot_time=slot_time,
        student_display_name=name,
        student_identifier=identifier,
        repository=repository,
    )


def make_user(user_id: int, name: str, login_id: str | None = None, sis_user_id: str | None = None) -> CanvasUser:
    return CanvasUser(id=user_id, name=name, login_id=login_id, sis_user_id=sis_user_id)


def make_response(
    status: int = 200,
    json_data: Any = None,
    links: dict[str, dict[str, str]] | None = None,
    headers: dict[str, str] | None = None,
    chunks: list[bytes] | None = None,
    text: str = "",
) -> MagicMock:
    """Build a requests.Response stand-in."""
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.json.return_value = json_data
    response.links = links or {}
    response.headers = headers or {}
    response.text = text
    response.reason = ""
    response.iter_content.return_value = iter(chunks or [])
    return response


@pytest.fixture
def session():
    """A requests.Session stand-in with a real headers dict."""
    mock_session = MagicMock()
    mock_session.headers = {}
    return mock_session
