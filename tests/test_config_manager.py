from __future__ import annotations

from datetime import timedelta

import pytest

from helpdesk_sla.core import ConfigurationException
from helpdesk_sla.sla.infrastructure import SLAConfigManager, SLAScheduler

VALID_CONFIG = """
business_hours:
  start_hour: 8
  end_hour: 16
  timezone: Europe/Berlin
default_notify_before_minutes: 20
seed_policies:
  - name: Critical
    priority: critical
    response_time_minutes: 15
    resolution_time_minutes: 120
    business_hours_only: false
"""


def test_load_reads_yaml_and_fills_missing_seeds(tmp_path) -> None:
    path = tmp_path / "sla_config.yaml"
    path.write_text(VALID_CONFIG)

    manager = SLAConfigManager()
    config = manager.load(path)

    assert config.business_hours.start_hour == 8
    assert config.business_hours.timezone == "Europe/Berlin"
    assert config.default_at_risk_lead == timedelta(minutes=20)
    assert config.get_seed_policy("critical").response_time_minutes == 15
    assert sorted(d.priority for d in config.seed_policies) == ["critical", "high", "low", "medium"]
    assert manager.get_config() is config


def test_missing_file_uses_defaults(tmp_path) -> None:
    manager = SLAConfigManager()
    config = manager.load(tmp_path / "absent.yaml")
    assert config.business_hours.end_hour == 17
    assert len(config.seed_policies) == 4


def test_invalid_file_fails_initial_load(tmp_path) -> None:
    path = tmp_path / "sla_config.yaml"
    path.write_text("business_hours:\n  start_hour: 18\n  end_hour: 9\n")

    with pytest.raises(ConfigurationException):
        SLAConfigManager().load(path)


def test_failed_reload_keeps_previous_config(tmp_path) -> None:
    path = tmp_path / "sla_config.yaml"
    path.write_text(VALID_CONFIG)
    manager = SLAConfigManager()
    manager.load(path)

    path.write_text("business_hours: [not, a, mapping")
    assert manager.reload() is False
    assert manager.config.business_hours.start_hour == 8

    path.write_text("default_notify_before_minutes: 45\n")
    assert manager.reload() is True
    assert manager.config.default_notify_before_minutes == 45


def test_unloaded_manager_refuses_access() -> None:
    manager = SLAConfigManager()
    assert manager.reload() is False
    with pytest.raises(RuntimeError):
        manager.get_config()


@pytest.mark.asyncio
async def test_scheduler_start_and_stop() -> None:
    calls = []

    async def job() -> None:
        calls.append(1)

    scheduler = SLAScheduler(interval_seconds=3600)
    await scheduler.start(job)
    assert scheduler.is_running

    # Starting twice is a no-op.
    await scheduler.start(job)

    await scheduler.stop()
    assert not scheduler.is_running
    assert calls == []
