"""Tests for configuration loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from remores_downloader.configs import DEFAULT_CANVAS_API_URL, Config, RetryConfig, load_config


def test_defaults_without_file():
    config = load_config(None)

    assert config.canvas.api_url == DEFAULT_CANVAS_API_URL
    assert config.canvas.api_token == ""
    assert config.retry.max_attempts == 3
    assert config.matching.fuzzy_threshold is None
    assert config.download.output_dir == Path("downloads")


def test_load_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "canvas:\n"
        "  api_url: https://canvas.example.edu/api/v1/\n"
        "download:\n"
        "  output_dir: out\n"
        "  report_path: report.csv\n"
    )

    config = load_config(path)

    assert config.canvas.api_url == "https://canvas.example.edu/api/v1"
    assert config.download.output_dir == Path("out")
    assert config.download.report_path == Path("report.csv")


def test_empty_yaml_gives_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert load_config(path) == Config()


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")


def test_invalid_threshold(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("matching:\n  fuzzy_threshold: 1.5\n")
    with pytest.raises(ValidationError):
        load_config(path)


def test_backoff_is_exponential_and_bounded():
    retry = RetryConfig(backoff_seconds=1.0, max_backoff_seconds=3.0)
    assert [retry.delay_for(attempt) for attempt in (1, 2, 3)] == [1.0, 2.0, 3.0]
