"""Run summary and report generation utilities for YAML and CSV formats."""

from __future__ import annotations

import csv
from collections.abc import Sequence
from pathlib import Path

import yaml

from remores_downloader.models import BookingRecord, DownloadOutcome, DownloadStatus, MatchResult
from remores_downloader.types import BookingReport, StudentInfo


def _booking_key(booking: BookingRecord) -> str:
    return f"{booking.slot_time:%Y-%m-%d %H:%M} {booking.student_identifier}"


def _booking_status(entry: BookingReport) -> str:
    if entry["errors"]:
        return "failed"
    if entry["written"]:
        return "downloaded"
    if entry["skipped"]:
        return "skipped"
    return "failed"


def build_report(matches: Sequence[MatchResult], outcomes: Sequence[DownloadOutcome]) -> dict[str, BookingReport]:
    """Combine match results and download outcomes into one entry per booking.

    Args:
        matches: Match results, one per booking.
        outcomes: Download outcomes for the same bookings.

    Returns:
        Report entries keyed by slot time and student identifier, in booking order.
    """
    report: dict[str, BookingReport] = {}
    for match in matches:
        booking = match.booking
        user = match.canvas_user
        report[_booking_key(booking)] = BookingReport(
            slot_time=f"{booking.slot_time:%Y-%m-%d %H:%M}",
            name=booking.student_display_name,
            identifier=booking.student_identifier,
            match=match.status.value,
            student=StudentInfo(name=user.name, login_id=user.login_id or "", id=str(user.id)) if user else None,
            status="",
            written=[],
            skipped=[],
            errors=[],
        )

    for outcome in outcomes:
        entry = report.get(_booking_key(outcome.booking))
        if entry is None:
            continue
        label = outcome.target_path.name if outcome.target_path else ""
        if outcome.status is DownloadStatus.WRITTEN:
            entry["written"].append(label)
        elif outcome.status is DownloadStatus.SKIPPED:
            name = label or (outcome.attachment.display_name if outcome.attachment else "")
            entry["skipped"].append(f"{name} ({outcome.reason})")
        else:
            entry["errors"].append(f"{label}: {outcome.reason}" if label else outcome.reason)

    for entry in report.values():
        entry["written"].sort()
        entry["skipped"].sort()
        entry["errors"].sort()
        entry["status"] = _booking_status(entry)

    return report


def format_summary(report: dict[str, BookingReport]) -> str:
    """Render the report as a fixed-width table followed by totals."""
    headers = ("Slot", "Name", "Identifier", "Match", "Canvas user", "Status", "Details")
    rows: list[tuple[str, ...]] = []
    for entry in report.values():
        student = entry["student"]
        details = entry["written"] + entry["skipped"] + entry["errors"]
        rows.append(
            (
                entry["slot_time"],
                entry["name"],
                entry["identifier"],
                entry["match"],
                f"{student['name']} ({student['login_id'] or student['id']})" if student else "-",
                entry["status"],
                "; ".join(details),
            )
        )

    widths = [max([len(h)] + [len(r[i]) for r in rows]) for i, h in enumerate(headers[:-1])]
    lines = []
    for row in [headers, *rows]:
        cells = [cell.ljust(width) for cell, width in zip(row[:-1], widths)]
        lines.append("  ".join([*cells, row[-1]]).rstrip())
    lines.insert(1, "  ".join("-" * w for w in widths) + "  " + "-" * len(headers[-1]))

    entries = list(report.values())
    matched = sum(1 for e in entries if e["student"] is not None)
    totals = {
        "matched": matched,
        "unmatched": len(entries) - matched,
        "downloaded": sum(1 for e in entries if e["status"] == "downloaded"),
        "skipped": sum(1 for e in entries if e["status"] == "skipped"),
        "failed": sum(1 for e in entries if e["status"] == "failed"),
    }
    lines.append("")
    lines.append(", ".join(f"{count} {label}" for label, count in totals.items()))
    return "\n".join(lines)


def _save_report_as_yaml(report: dict[str, BookingReport], report_path: Path) -> None:
    """Save download report to YAML file.

    Raises:
        OSError: If report cannot be written.
    """
    with open(report_path, "w") as f:
        yaml.dump(report, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
    print(f"Wrote download report to {report_path} (YAML format)")


def _save_report_as_csv(report: dict[str, BookingReport], report_path: Path) -> None:
    """Save download report to CSV file.

    Raises:
        OSError: If report cannot be written.
    """
    with open(report_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)

        writer.writerow(
            [
                "Slot",
                "Booking Name",
                "Booking Identifier",
                "Match",
                "Canvas Name",
                "Canvas Login",
                "Canvas ID",
                "Status",
                "Written Files",
                "Skipped Files",
                "Errors",
            ]
        )

        for data in report.values():
            student = data["student"]
            writer.writerow(
                [
                    data["slot_time"],
                    data["name"],
                    data["identifier"],
                    data["match"],
                    student["name"] if student else "",
                    student["login_id"] if student else "",
                    student["id"] if student else "",
                    data["status"],
                    ", ".join(data["written"]),
                    ", ".join(data["skipped"]),
                    "; ".join(data["errors"]),
                ]
            )

    print(f"Wrote download report to {report_path} (CSV format)")


def save_report(report: dict[str, BookingReport], report_path: Path) -> None:
    """Save download report to file (YAML or CSV based on extension).

    Args:
        report: Report dictionary from build_report.
        report_path: Path to save the report.

    Raises:
        OSError: If report cannot be written.
        ValueError: If file extension is not supported.
    """
    suffix = report_path.suffix.lower()

    if suffix in [".yaml", ".yml"]:
        _save_report_as_yaml(report, report_path)
    elif suffix == ".csv":
        _save_report_as_csv(report, report_path)
    else:
        raise ValueError(f"Unsupported report file extension: {suffix}. Supported formats: .yaml, .yml, .csv")
