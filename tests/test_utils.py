import sqlite3

import pytest

from reelrank import utils


def test_retry_with_backoff_retries_then_succeeds(monkeypatch):
    monkeypatch.setattr(utils.time, "sleep", lambda _: None)
    calls = {"n": 0}

    @utils.retry_with_backoff(max_retries=3, exceptions=(sqlite3.OperationalError,), retry_if=utils.is_sqlite_busy)
    def flaky():
        calls["n"] += 1
        if calls["n"] < 3:
            raise sqlite3.OperationalError("database is locked")
        return "ok"

    assert flaky() == "ok"
    assert calls["n"] == 3


def test_retry_with_backoff_skips_non_transient_errors(monkeypatch):
    monkeypatch.setattr(utils.time, "sleep", lambda _: None)
    calls = {"n": 0}

    @utils.retry_with_backoff(max_retries=3, exceptions=(sqlite3.OperationalError,), retry_if=utils.is_sqlite_busy)
    def broken():
        calls["n"] += 1
        raise sqlite3.OperationalError("no such table: feature_feedback")

    with pytest.raises(sqlite3.OperationalError):
        broken()
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_async_retry_gives_up_after_max_retries():
    calls = {"n": 0}

    @utils.async_retry_with_backoff(max_retries=2, initial_delay=0.0)
    async def always_fails():
        calls["n"] += 1
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await always_fails()
    assert calls["n"] == 2


def test_clamp_and_timestamp_format():
    assert utils.clamp(1.5, 0.0, 1.0) == 1.0
    assert utils.clamp(-2, 0, 10) == 0
    stamp = utils.utc_now_iso()
    assert "T" in stamp and "+" not in stamp
