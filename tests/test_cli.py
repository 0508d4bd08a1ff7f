import json
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from ct_wrangler.cli import cli
from ct_wrangler.errors import ConsistencyViolation
from ct_wrangler.wrangler import SegmentStats, WrangleResult, WrangleState

from .test_log_list import LOG_LIST


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def log_list_file(tmp_path):
    path = tmp_path / "log_list.json"
    path.write_text(json.dumps(LOG_LIST))
    return path


def test_wrangle_requires_arguments(runner):
    result = runner.invoke(cli, ["wrangle", "scanlog"])
    assert result.exit_code == 2


def test_wrangle_reports_progress(runner, tmp_path):
    outcome = WrangleResult(
        log_id="argon2025h1",
        state=WrangleState.CAUGHT_UP,
        start_index=0,
        next_index=25000,
        tree_size=25000,
        segments=[SegmentStats(0, 20000, 40.0), SegmentStats(20000, 25000, 9.5)],
    )
    with patch("ct_wrangler.cli.run", new=AsyncMock(return_value=outcome)) as run:
        result = runner.invoke(
            cli,
            [
                "wrangle", "scanlog", "https://ct.example.com/log/", str(tmp_path), "argon2025h1",
                "--stride", "20000", "--fetch-timeout", "0",
            ],
        )

    assert result.exit_code == 0, result.output
    assert "25,000 entries" in result.output
    log_id, log_url, storage, scanlog, config = run.call_args.args
    assert (log_id, scanlog) == ("argon2025h1", "scanlog")
    assert config.stride == 20000
    assert config.fetch_timeout is None


def test_wrangle_exit_code_follows_error(runner, tmp_path):
    failure = ConsistencyViolation("tree shrank", previous_size=1000, observed_size=500)
    with patch("ct_wrangler.cli.run", new=AsyncMock(side_effect=failure)):
        result = runner.invoke(
            cli, ["wrangle", "scanlog", "https://ct.example.com/log/", str(tmp_path), "log"]
        )

    assert result.exit_code == 4


def test_current_logs_from_file(runner, log_list_file):
    result = runner.invoke(
        cli,
        ["current-logs", "--log-list", str(log_list_file), "--now", "2025-03-01T00:00:00Z", "--no-sizes"],
    )

    assert result.exit_code == 0, result.output
    assert "3 of 5 logs are current" in result.output


def test_current_logs_now_from_environment(runner, log_list_file):
    result = runner.invoke(
        cli,
        ["current-logs", "--log-list", str(log_list_file), "--no-sizes"],
        env={"CT_WRANGLER_CURRENT_LOGS_NOW": "2021-06-01T00:00:00Z"},
        auto_envvar_prefix="CT_WRANGLER",
    )

    assert result.exit_code == 0, result.output
    # Argon2021 still inside its interval, only Aviator is gone
    assert "4 of 5 logs are current" in result.output


def test_current_logs_rejects_bad_now(runner, log_list_file):
    result = runner.invoke(
        cli, ["current-logs", "--log-list", str(log_list_file), "--now", "yesterday"]
    )
    assert result.exit_code == 2


def test_current_logs_unreadable_list(runner, tmp_path):
    result = runner.invoke(
        cli, ["current-logs", "--log-list", str(tmp_path / "missing.json"), "--no-sizes"]
    )
    assert result.exit_code == 7
