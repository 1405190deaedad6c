"""Scraping utilities for the REMORES booking system."""

from __future__ import annotations

import re
from datetime import datetime

import requests
from bs4 import BeautifulSoup, NavigableString, Tag

from remores_downloader.configs import RemoresConfig
from remores_downloader.errors import ParseFailure, ScrapeError
from remores_downloader.models import BookingRecord

DATE_PATTERN = re.compile(r"\b(\d{2}-\d{2}-\d{2})\b")
TIME_PATTERN = re.compile(r"\b(\d{1,2}:\d{2})\b")
RESERVATION_VIEW_BUTTON = "+Hämta+bokningslista+"


def fetch_bookings(
    repository: str,
    assistant_id: str,
    config: RemoresConfig | None = None,
    session: requests.Session | None = None,
) -> list[BookingRecord]:
    """
    Fetch every booking on the booking lists owned by an assistant.

    The overview page of a repository lists one booking list per assistant and
    session; the lists whose identifier ends with the assistant's KTH id are fetched
    and parsed.

    Args:
        repository: REMORES repository name (e.g. ``adk-mastarprov``)
        assistant_id: KTH id of the operator, e.g. ``asalamon``
        config: REMORES endpoint settings
        session: Optional requests session to reuse

    Returns:
        Bookings from all of the assistant's lists, in page order

    Raises:
        ScrapeError: If REMORES is unreachable or rejects the request
        ParseFailure: If a booking list is missing an expected field
    """
    if not repository:
        raise ValueError("Repository is required")

    config = config or RemoresConfig()
    session = session or requests.Session()

    overview = _get_page(
        session,
        "GET",
        config.url,
        config.timeout_seconds,
        params={"request:overview": "yes", "repository": repository, "shownameemail": "yes"},
    )
    booking_lists = find_booking_lists(overview, assistant_id)
    if not booking_lists:
        print(f"Warning: no booking lists for '{assistant_id}' in repository '{repository}'")

    bookings: list[BookingRecord] = []
    for event in booking_lists:
        content = _get_page(
            session,
            "POST",
            config.url,
            config.timeout_seconds,
            data={
                "event": event,
                "request:reservation-view": RESERVATION_VIEW_BUTTON,
                "shownameemail": "yes",
                "repository": repository,
            },
        )
        bookings.extend(parse_booking_list(content, repository))

    return bookings


def _get_page(session: requests.Session, method: str, url: str, timeout: int, **kwargs) -> str:
    try:
        response = session.request(method, url, timeout=timeout, **kwargs)
    except requests.exceptions.RequestException as e:
        raise ScrapeError(f"REMORES is unreachable: {e}") from e

    if response.status_code in (401, 403):
        raise ScrapeError(f"REMORES rejected the request (HTTP {response.status_code})")
    try:
        response.raise_for_status()
    except requests.exceptions.HTTPError as e:
        raise ScrapeError(f"REMORES request failed: {e}") from e

    return response.text


def find_booking_lists(html: str, assistant_id: str) -> list[str]:
    """
    Extract the booking list identifiers belonging to an assistant from an overview page.

    Args:
        html: Overview page markup
        assistant_id: KTH id the list identifiers end with

    Returns:
        List identifiers in page order
    """
    soup = BeautifulSoup(html, "html.parser")
    events: list[str] = []
    for input_tag in soup.find_all("input"):
        value = input_tag.get("value")
        if isinstance(value, str) and value.endswith(assistant_id) and value not in events:
            events.append(value)
    return events


def parse_booking_list(html: str, repository: str) -> list[BookingRecord]:
    """
    Parse a booking list page into booking records.

    Each booking is a ``reservation`` input preceded by its start time and followed
    by the student's name and e-mail. The list date appears once near the top.

    Args:
        html: Booking list markup
        repository: Repository the list belongs to

    Returns:
        One BookingRecord per reservation input

    Raises:
        ParseFailure: If the date, or a booking's time, name or e-mail, is missing
    """
    soup = BeautifulSoup(html, "html.parser")

    date_node = soup.find(string=DATE_PATTERN)
    if date_node is None:
        raise ParseFailure("date", "booking list header")
    date = _search(DATE_PATTERN, str(date_node), "date", "booking list header")

    bookings: list[BookingRecord] = []
    for index, reservation in enumerate(soup.select("input[name=reservation]")):
        context = f"reservation #{index + 1}"
        time = _find_time(reservation, context)
        name = _find_name(reservation, context)
        email = _find_email(reservation, context)

        try:
            slot_time = datetime.strptime(f"{date} {time}", "%y-%m-%d %H:%M")
        except ValueError as e:
            raise ParseFailure("time", f"{context}: unparseable '{date} {time}'") from e

        bookings.append(
            BookingRecord(
                slot_time=slot_time,
                student_display_name=name,
                student_identifier=email,
                repository=repository,
            )
        )

    return bookings


def _search(pattern: re.Pattern[str], text: str, field: str, context: str) -> str:
    match = pattern.search(text)
    if match is None:
        raise ParseFailure(field, context)
    return match.group(1)


def _find_time(reservation: Tag, context: str) -> str:
    # Only look back as far as the previous reservation, whose time is not ours
    for element in reservation.previous_elements:
        if isinstance(element, Tag) and element.name == "input" and element.get("name") == "reservation":
            break
        if isinstance(element, NavigableString) and TIME_PATTERN.search(element):
            return _search(TIME_PATTERN, str(element), "time", context)
    raise ParseFailure("time", context)


def _find_name(reservation: Tag, context: str) -> str:
    # The name is the bare text between the input and the e-mail element
    parts: list[str] = []
    for sibling in reservation.next_siblings:
        if isinstance(sibling, Tag):
            break
        if isinstance(sibling, NavigableString):
            parts.append(str(sibling))
    name = " ".join("".join(parts).split()).rstrip("(").strip()
    if not name:
        raise ParseFailure("name", context)
    return name


def _find_email(reservation: Tag, context: str) -> str:
    for sibling in reservation.next_siblings:
        if not isinstance(sibling, Tag):
            continue
        if sibling.name == "input" and sibling.get("name") == "reservation":
            break
        text = sibling.get_text(strip=True)
        if "@" in text:
            return text
        href = sibling.get("href")
        if isinstance(href, str) and href.startswith("mailto:"):
            return href.removeprefix("mailto:")
    raise ParseFailure("email", context)
