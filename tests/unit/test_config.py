"""
Unit tests for OrchestrationSettings.
"""

import pytest
from pydantic import ValidationError

from write_consistency.config import OrchestrationSettings, get_settings
from write_consistency.orchestration import CircuitState


def test_defaults(clean_env):
    s = OrchestrationSettings()

    assert s.database_url is None
    assert s.retry_max_attempts == 3
    assert s.retry_delay_ms == 1_000
    assert s.breaker_failure_threshold == 5
    assert s.breaker_reset_timeout_ms == 30_000
    assert s.verify_max_attempts == 5
    assert s.verify_interval_ms == 300
    assert s.queue_concurrency == 2
    assert s.queue_max_retries == 3
    assert s.queue_retry_delay_ms == 5_000
    assert s.log_level == "INFO"


def test_env_override(clean_env, monkeypatch, mock_dsn):
    monkeypatch.setenv("WRITE_CONSISTENCY_DATABASE_URL", mock_dsn)
    monkeypatch.setenv("WRITE_CONSISTENCY_RETRY_MAX_ATTEMPTS", "7")
    monkeypatch.setenv("write_consistency_queue_concurrency", "4")

    s = OrchestrationSettings()

    assert s.database_url == mock_dsn
    assert s.retry_max_attempts == 7
    assert s.queue_concurrency == 4


def test_dotenv_file(clean_env, tmp_path):
    (tmp_path / ".env").write_text("WRITE_CONSISTENCY_VERIFY_INTERVAL_MS=50\nUNRELATED=1\n")

    assert OrchestrationSettings().verify_interval_ms == 50


def test_invalid_values_rejected(clean_env, monkeypatch):
    monkeypatch.setenv("WRITE_CONSISTENCY_RETRY_MAX_ATTEMPTS", "0")
    with pytest.raises(ValidationError):
        OrchestrationSettings()


def test_get_settings_is_cached(clean_env):
    assert get_settings() is get_settings()


@pytest.mark.asyncio
async def test_factories_use_settings(clean_env):
    s = OrchestrationSettings(
        retry_max_attempts=4,
        retry_delay_ms=10,
        breaker_failure_threshold=2,
        verify_max_attempts=9,
        queue_concurrency=3,
        queue_max_retries=6,
        queue_high_watermark=100,
    )

    policy = s.retry_policy()
    assert (policy.max_attempts, policy.delay_ms) == (4, 10)

    breaker = s.circuit_breaker("db")
    assert breaker.name == "db"
    assert breaker.failure_threshold == 2
    assert breaker.get_state() is CircuitState.CLOSED

    verifier = s.write_verifier("profile")
    assert verifier.max_attempts == 9
    assert verifier.name == "profile"

    async def process(payload):
        return None

    queue = s.retry_queue(process, name="profiles", on_error=lambda e, i: None)
    assert queue.concurrency == 3
    assert queue.max_retries == 6
    assert queue.name == "profiles"


def test_reconciliation_job_factory(clean_env, monkeypatch):
    monkeypatch.setenv("WRITE_CONSISTENCY_RECONCILE_INTERVAL_MS", "2500")

    async def fetch():
        return []

    job = OrchestrationSettings().reconciliation_job(fetch, bool, name="profiles-sweep")

    assert job.interval_ms == 2_500
    assert job.name == "profiles-sweep"
