"""Tests for command-line parsing and pre-flight checks."""
import argparse
from datetime import date

import pytest

from dsacord import cli


def test_parse_date():
    assert cli.parse_date("2024-12-28") == date(2024, 12, 28)
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_date("28-12-2024")


def test_ingest_arguments():
    args = cli.build_parser().parse_args([
        "ingest", "--from", "2024-12-28", "--to", "2024-12-29",
        "--workers", "3", "--overwrite-duplicates", "--dbuser", "loader", "--verbose",
    ])

    assert args.command == "ingest"
    assert args.from_date == date(2024, 12, 28)
    assert args.to_date == date(2024, 12, 29)
    assert args.workers == 3
    assert args.overwrite_duplicates is True
    assert args.skip_checking_duplicates is False
    assert args.dbuser == "loader"
    assert args.dbhost is None
    assert args.verbose is True


def test_ingest_requires_a_date_range():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["ingest", "--from", "2024-12-28"])


def test_reversed_range_fails_before_connecting(monkeypatch):
    def no_database(config):
        raise AssertionError("must not connect")

    monkeypatch.setattr(cli, "DatabaseManager", no_database)

    assert cli.main(["ingest", "--from", "2024-12-29", "--to", "2024-12-28"]) == 1


def test_range_warnings(log_output):
    cli.warn_about_range(date(2024, 1, 1), date(2025, 1, 10), today=date(2025, 1, 10))

    assert len(log_output.warnings) == 2
    assert "first published dump" in log_output.warnings[0]


def test_past_range_has_no_warnings(log_output):
    cli.warn_about_range(date(2024, 12, 28), date(2024, 12, 29), today=date(2025, 1, 10))

    assert log_output.warnings == []


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 1
    assert "usage: dsacord" in capsys.readouterr().out
