"""Tests for the run summary and report files."""

import csv
from pathlib import Path

import pytest
import yaml

from conftest import make_booking, make_user

from remores_downloader.models import Attachment, DownloadOutcome, DownloadStatus, MatchResult, MatchStatus
from remores_downloader.reporting import build_report, format_summary, save_report


@pytest.fixture
def matches():
    ann = make_booking("ann@kth.se", "Ann A")
    nobody = make_booking("x@gmail.com", "No Body")
    return [
        MatchResult(booking=ann, canvas_user=make_user(1, "Ann A", login_id="ann"), status=MatchStatus.EXACT),
        MatchResult(booking=nobody, status=MatchStatus.NOT_FOUND),
    ]


@pytest.fixture
def outcomes(matches, tmp_path):
    ann, nobody = matches[0].booking, matches[1].booking
    return [
        DownloadOutcome(booking=ann, target_path=tmp_path / "ann-lab.py", status=DownloadStatus.WRITTEN),
        DownloadOutcome(
            booking=ann,
            attachment=Attachment(display_name="notes.txt", url="https://files.test/1"),
            status=DownloadStatus.SKIPPED,
            reason="already_exists",
        ),
        DownloadOutcome(booking=nobody, status=DownloadStatus.FAILED, reason="unmatched_booking"),
    ]


class TestBuildReport:
    def test_one_entry_per_booking(self, matches, outcomes):
        report = build_report(matches, outcomes)

        ann, nobody = report.values()
        assert ann["match"] == "exact"
        assert ann["student"] == {"name": "Ann A", "login_id": "ann", "id": "1"}
        assert ann["written"] == ["ann-lab.py"]
        assert ann["skipped"] == ["notes.txt (already_exists)"]
        assert ann["status"] == "downloaded"
        assert nobody["student"] is None
        assert nobody["errors"] == ["unmatched_booking"]
        assert nobody["status"] == "failed"

    def test_summary_lists_every_booking_and_totals(self, matches, outcomes):
        summary = format_summary(build_report(matches, outcomes))

        assert "ann@kth.se" in summary
        assert "x@gmail.com" in summary
        assert "not_found" in summary
        assert summary.splitlines()[-1] == "1 matched, 1 unmatched, 1 downloaded, 0 skipped, 1 failed"


class TestSaveReport:
    def test_yaml(self, matches, outcomes, tmp_path):
        path = tmp_path / "report.yaml"
        save_report(build_report(matches, outcomes), path)

        data = yaml.safe_load(path.read_text())
        assert [entry["identifier"] for entry in data.values()] == ["ann@kth.se", "x@gmail.com"]

    def test_csv(self, matches, outcomes, tmp_path):
        path = tmp_path / "report.csv"
        save_report(build_report(matches, outcomes), path)

        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert rows[0]["Canvas Login"] == "ann"
        assert rows[1]["Status"] == "failed"

    def test_unsupported_extension(self, matches, outcomes, tmp_path):
        with pytest.raises(ValueError):
            save_report(build_report(matches, outcomes), Path(tmp_path / "report.txt"))
