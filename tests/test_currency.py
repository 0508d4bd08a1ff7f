from datetime import datetime, timedelta, timezone

import httpx
import pytest

from ct_wrangler.currency import (
    BR_VALIDITY_SCHEDULE,
    MaxValidityPolicy,
    classify,
    could_hold_unexpired,
    is_current,
    survey_tree_sizes,
)
from ct_wrangler.log_list import LogDescriptor, LogLifecycle, TemporalInterval

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_log(name="usable", since=None, interval_end=None, url="https://ct.example.com/a/", kind="classic"):
    interval = None
    if interval_end is not None:
        interval = TemporalInterval(
            start_inclusive=interval_end - timedelta(days=365),
            end_exclusive=interval_end,
        )
    return LogDescriptor(
        description=f"{name} log",
        log_id="aWQ=",
        url=url,
        state=LogLifecycle(name=name, since=since),
        kind=kind,
        temporal_interval=interval,
    )


def test_retired_exactly_at_cutoff_is_excluded():
    log = make_log("retired", since=NOW - timedelta(days=825))
    assert not is_current(log, NOW)


def test_retired_one_day_inside_cutoff_is_included():
    log = make_log("retired", since=NOW - timedelta(days=824))
    assert is_current(log, NOW)


@pytest.mark.parametrize("days,expected", [(826, False), (825, False), (824, True), (0, True)])
def test_readonly_uses_same_cutoff(days, expected):
    log = make_log("readonly", since=NOW - timedelta(days=days))
    assert is_current(log, NOW) is expected


def test_usable_log_without_interval_is_current():
    assert is_current(make_log(), NOW)


def test_expired_temporal_interval_is_excluded():
    assert not is_current(make_log(interval_end=NOW), NOW)
    assert not is_current(make_log(interval_end=NOW - timedelta(days=1)), NOW)
    assert is_current(make_log(interval_end=NOW + timedelta(seconds=1)), NOW)


def test_retired_without_timestamp_is_excluded():
    assert not is_current(make_log("retired"), NOW)


def test_policy_can_be_substituted():
    log = make_log("retired", since=NOW - timedelta(days=500))
    assert is_current(log, NOW)
    assert not is_current(log, NOW, MaxValidityPolicy(days=398))


def test_br_schedule_switches_after_december_2022():
    filed = datetime(2021, 10, 1, tzinfo=timezone.utc)
    before_switch = datetime(2022, 12, 1, tzinfo=timezone.utc)
    after_switch = datetime(2022, 12, 7, tzinfo=timezone.utc)

    assert could_hold_unexpired(filed, before_switch, BR_VALIDITY_SCHEDULE)
    assert not could_hold_unexpired(filed, after_switch, BR_VALIDITY_SCHEDULE)


def test_naive_now_is_treated_as_utc():
    log = make_log("retired", since=NOW - timedelta(days=824))
    assert is_current(log, NOW.replace(tzinfo=None))


def test_classify_keeps_catalog_order():
    catalog = [
        make_log("usable", url="https://a/"),
        make_log("retired", since=NOW - timedelta(days=1000), url="https://b/"),
        make_log("readonly", since=NOW - timedelta(days=10), url="https://c/"),
        make_log("usable", interval_end=NOW - timedelta(days=2), url="https://d/"),
        make_log("qualified", url="https://e/"),
    ]

    current = classify(catalog, NOW)

    assert [log.url for log in current] == ["https://a/", "https://c/", "https://e/"]


def test_classify_is_deterministic_in_now():
    catalog = [make_log("retired", since=NOW - timedelta(days=800))]
    assert classify(catalog, NOW) == catalog
    assert classify(catalog, NOW + timedelta(days=30)) == []


@pytest.mark.asyncio
async def test_survey_isolates_failures():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "good.example.com":
            return httpx.Response(200, json={"tree_size": 1234, "timestamp": 1})
        if request.url.host == "tiled.example.com":
            assert request.url.path == "/log/checkpoint"
            return httpx.Response(200, text="tiled.example.com/log\n77\nhash=\n\nsig\n")
        return httpx.Response(404)

    logs = [
        make_log(url="https://good.example.com/log/"),
        make_log(url="https://bad.example.com/log/"),
        make_log(url="https://tiled.example.com/log", kind="tiled"),
        make_log(url="https://[::1/"),
    ]

    report = await survey_tree_sizes(logs, transport=httpx.MockTransport(handler))

    assert report.sizes == {
        "https://good.example.com/log/": 1234,
        "https://tiled.example.com/log": 77,
    }
    assert sorted(report.failures) == ["https://[::1/", "https://bad.example.com/log/"]
    assert report.total == 1311
