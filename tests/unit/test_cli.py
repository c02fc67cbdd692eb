"""
CLI smoke tests (no database).
"""

import json
import sys

import pytest
import typer
from loguru import logger
from typer.testing import CliRunner

from write_consistency.cli import _parse_expectations, app

runner = CliRunner()


@pytest.fixture(autouse=True)
def restore_logger():
    yield
    logger.remove()
    logger.add(sys.stderr)


def test_settings_masks_dsn(clean_env, monkeypatch, mock_dsn):
    monkeypatch.setenv("WRITE_CONSISTENCY_DATABASE_URL", mock_dsn)

    result = runner.invoke(app, ["settings"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["database_url"] == "***"
    assert data["retry_max_attempts"] == 3


def test_ping_without_dsn_exits_2(clean_env):
    result = runner.invoke(app, ["ping"])
    assert result.exit_code == 2


def test_verify_row_rejects_bad_expectation(clean_env, mock_dsn):
    result = runner.invoke(
        app,
        ["verify-row", "profiles", "--column", "id", "--value", "1", "--expect", "oops", "--dsn", mock_dsn],
    )
    assert result.exit_code == 2


def test_parse_expectations():
    assert _parse_expectations(["onboarding_completed=True", " a = b "]) == {
        "onboarding_completed": "True",
        "a": "b",
    }
    with pytest.raises(typer.BadParameter):
        _parse_expectations(["=value"])
