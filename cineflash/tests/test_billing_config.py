from __future__ import annotations

import pytest

from cineflash.app.billing.config import load_billing_config


def test_defaults_when_environment_is_empty():
    config = load_billing_config({})

    assert config.cron_secret is None
    assert config.sync_min_interval_seconds == 60
    assert config.sync_scheduler_enabled is False
    assert config.sync_scheduler_interval_seconds == 3600
    assert config.job_credit_retry_attempts == 1


def test_values_are_parsed_from_environment():
    config = load_billing_config(
        {
            "CRON_SECRET": "  s3cret ",
            "SYNC_MIN_INTERVAL_SECONDS": "120",
            "SYNC_SCHEDULER_ENABLED": "yes",
            "SYNC_SCHEDULER_INTERVAL_SECONDS": "0",
            "JOB_CREDIT_RETRY_ATTEMPTS": "-3",
        }
    )

    assert config.cron_secret == "s3cret"
    assert config.sync_min_interval_seconds == 120
    assert config.sync_scheduler_enabled is True
    assert config.sync_scheduler_interval_seconds == 1
    assert config.job_credit_retry_attempts == 0


def test_invalid_integer_raises():
    with pytest.raises(ValueError):
        load_billing_config({"SYNC_MIN_INTERVAL_SECONDS": "soon"})
