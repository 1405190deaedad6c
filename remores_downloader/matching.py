"""Booking to Canvas user matching.

Bookings are resolved in up to three passes over a shrinking pool of unclaimed
Canvas users:

1. exact: the booking's e-mail (or its KTH id) equals a user's login or SIS id.
2. medium: exactly one unclaimed user has the same normalized display name.
3. fuzzy (optional): the single best name similarity at or above a threshold.

A user is claimed by at most one booking. Ties are reported as ambiguous rather
than resolved arbitrarily.
"""

from __future__ import annotations

import unicodedata
from collections import defaultdict
from collections.abc import Sequence
from difflib import SequenceMatcher

from remores_downloader.models import BookingRecord, CanvasUser, MatchResult, MatchStatus


def normalize_name(name: str) -> str:
    """Case-fold, strip diacritics and collapse whitespace.

    Args:
        name: Display name as typed by a student or stored in Canvas.

    Returns:
        Normalized name, e.g. ``"Åsa  Öberg "`` -> ``"asa oberg"``.
    """
    decomposed = unicodedata.normalize("NFKD", name)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return " ".join(stripped.casefold().split())


def identifier_keys(identifier: str | None, domain: str | None = None) -> set[str]:
    """Comparable forms of an identifier.

    An address at ``domain`` is also represented by its local part, so
    ``ann@kth.se`` matches a login id of either ``ann@kth.se`` or ``ann``.
    """
    if not identifier:
        return set()
    value = identifier.strip().casefold()
    keys = {value}
    if domain:
        suffix = "@" + domain.casefold()
        if value.endswith(suffix):
            keys.add(value.removesuffix(suffix))
    return keys


def _identifier_matches(booking: BookingRecord, user: CanvasUser, domain: str | None) -> bool:
    booking_keys = identifier_keys(booking.student_identifier, domain)
    user_keys = identifier_keys(user.login_id, domain) | identifier_keys(user.sis_user_id, domain)
    return bool(booking_keys & user_keys)


def match_all(
    bookings: Sequence[BookingRecord],
    canvas_users: Sequence[CanvasUser],
    identifier_domain: str | None = None,
    fuzzy_threshold: float | None = None,
) -> list[MatchResult]:
    """Resolve every booking to at most one Canvas user.

    Args:
        bookings: Scraped bookings, in the order they should claim users.
        canvas_users: Students enrolled in the course.
        identifier_domain: E-mail domain whose local part is a login id.
        fuzzy_threshold: Minimum SequenceMatcher ratio for the fuzzy pass; None disables it.

    Returns:
        One MatchResult per booking, in the same order as ``bookings``.
    """
    users_by_id = {user.id: user for user in canvas_users}
    remaining: set[int] = set(users_by_id)
    results: dict[int, MatchResult] = {}

    _match_exact(bookings, users_by_id, remaining, results, identifier_domain)
    _match_by_name(bookings, users_by_id, remaining, results)
    if fuzzy_threshold is not None:
        _match_fuzzy(bookings, users_by_id, remaining, results, fuzzy_threshold)

    for index, booking in enumerate(bookings):
        if index not in results:
            results[index] = MatchResult(booking=booking, status=MatchStatus.NOT_FOUND)
        elif results[index].status is MatchStatus.AMBIGUOUS:
            names = ", ".join(str(u) for u in results[index].candidates)
            print(f"Warning: ambiguous match for {booking.student_display_name} ({booking.student_identifier}): {names}")

    return [results[index] for index in range(len(bookings))]


def _match_exact(
    bookings: Sequence[BookingRecord],
    users_by_id: dict[int, CanvasUser],
    remaining: set[int],
    results: dict[int, MatchResult],
    domain: str | None,
) -> None:
    for index, booking in enumerate(bookings):
        owners = [user for user in users_by_id.values() if _identifier_matches(booking, user, domain)]
        candidates = sorted((user for user in owners if user.id in remaining), key=lambda user: user.id)
        if len(candidates) == 1:
            user = candidates[0]
            remaining.discard(user.id)
            results[index] = MatchResult(booking=booking, canvas_user=user, status=MatchStatus.EXACT)
        elif len(candidates) > 1:
            results[index] = MatchResult(booking=booking, status=MatchStatus.AMBIGUOUS, candidates=candidates)
        elif owners:
            # The identifier belongs to a user an earlier booking already claimed
            print(f"Warning: {booking.student_identifier} has more than one booking, only the first is matched")
            results[index] = MatchResult(booking=booking, status=MatchStatus.NOT_FOUND)


def _match_by_name(
    bookings: Sequence[BookingRecord],
    users_by_id: dict[int, CanvasUser],
    remaining: set[int],
    results: dict[int, MatchResult],
) -> None:
    pending: dict[str, list[int]] = defaultdict(list)
    for index, booking in enumerate(bookings):
        if index not in results:
            pending[normalize_name(booking.student_display_name)].append(index)

    users_by_name: dict[str, list[CanvasUser]] = defaultdict(list)
    for uid in sorted(remaining):
        users_by_name[normalize_name(users_by_id[uid].name)].append(users_by_id[uid])

    for name, indices in pending.items():
        candidates = users_by_name.get(name, [])
        if not candidates:
            continue
        if len(indices) > 1:
            # Several bookings share the name; none of them can claim a user by name alone
            for index in indices:
                results[index] = MatchResult(booking=bookings[index], status=MatchStatus.AMBIGUOUS, candidates=candidates)
        elif len(candidates) == 1:
            user = candidates[0]
            remaining.discard(user.id)
            results[indices[0]] = MatchResult(booking=bookings[indices[0]], canvas_user=user, status=MatchStatus.MEDIUM)
        elif len(candidates) > 1:
            results[indices[0]] = MatchResult(
                booking=bookings[indices[0]], status=MatchStatus.AMBIGUOUS, candidates=candidates
            )


def _match_fuzzy(
    bookings: Sequence[BookingRecord],
    users_by_id: dict[int, CanvasUser],
    remaining: set[int],
    results: dict[int, MatchResult],
    threshold: float,
) -> None:
    for index, booking in enumerate(bookings):
        if index in results:
            continue
        name = normalize_name(booking.student_display_name)
        scored = [
            (SequenceMatcher(None, name, normalize_name(users_by_id[uid].name)).ratio(), users_by_id[uid])
            for uid in sorted(remaining)
        ]
        scored = [(score, user) for score, user in scored if score >= threshold]
        if not scored:
            continue
        best = max(score for score, _ in scored)
        top = [user for score, user in scored if score == best]
        if len(top) == 1:
            remaining.discard(top[0].id)
            results[index] = MatchResult(booking=booking, canvas_user=top[0], status=MatchStatus.FUZZY)
        else:
            results[index] = MatchResult(booking=booking, status=MatchStatus.AMBIGUOUS, candidates=top)
