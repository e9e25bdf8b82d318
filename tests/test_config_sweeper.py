"""Tests for coordinator configuration and the expiry sweeper."""

import asyncio
from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from multisig_kernel.coordinator.proposals import ProposalCoordinator
from multisig_kernel.coordinator.sweeper import ExpirySweeper
from multisig_kernel.models.action import Command
from multisig_kernel.models.config import CoordinatorConfig
from multisig_kernel.models.session import SessionState


def _make_sweeper(registry, gateway, ledger, **config) -> ExpirySweeper:
    coordinator = ProposalCoordinator(
        registry, gateway, ledger=ledger, config=CoordinatorConfig(**config)
    )
    return ExpirySweeper(coordinator)


def _overdue_proposal(coordinator, action_id="p_old"):
    created = datetime.utcnow() - timedelta(hours=2)
    return coordinator.create_proposal(
        "eve",
        [Command(name="create_project", authority="bob_dave_dao")],
        expiration_time=created + timedelta(hours=1),
        action_id=action_id,
        now=created,
    )


class TestCoordinatorConfig:
    def test_defaults(self):
        config = CoordinatorConfig()
        assert config.wait_for_inclusion is False
        assert config.default_ttl_seconds == 3000
        assert config.sweep_schedule is None
        assert config.ledger_path == ":memory:"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("MULTISIG_WAIT_FOR_INCLUSION", "yes")
        monkeypatch.setenv("MULTISIG_INCLUSION_TIMEOUT_SECONDS", "12.5")
        monkeypatch.setenv("MULTISIG_DEFAULT_TTL_SECONDS", "600")
        monkeypatch.setenv("MULTISIG_SWEEP_SCHEDULE", "*/5 * * * *")
        monkeypatch.setenv("MULTISIG_LEDGER_PATH", "/tmp/ledger.db")

        config = CoordinatorConfig.from_env()
        assert config.wait_for_inclusion is True
        assert config.inclusion_timeout_seconds == 12.5
        assert config.default_ttl_seconds == 600
        assert config.sweep_schedule == "*/5 * * * *"
        assert config.ledger_path == "/tmp/ledger.db"

    def test_from_env_empty_schedule_means_none(self, monkeypatch):
        monkeypatch.setenv("MULTISIG_SWEEP_SCHEDULE", "")
        monkeypatch.setenv("MULTISIG_WAIT_FOR_INCLUSION", "off")
        config = CoordinatorConfig.from_env()
        assert config.sweep_schedule is None
        assert config.wait_for_inclusion is False

    def test_custom_prefix(self, monkeypatch):
        monkeypatch.setenv("KERNEL_SWEEP_INTERVAL_SECONDS", "2")
        assert CoordinatorConfig.from_env(prefix="KERNEL_").sweep_interval_seconds == 2.0

    def test_invalid_timeout_rejected(self):
        with pytest.raises(ValidationError):
            CoordinatorConfig(inclusion_timeout_seconds=0)


class TestExpirySweeper:
    def test_interval_delay(self, registry, gateway, ledger):
        sweeper = _make_sweeper(registry, gateway, ledger, sweep_interval_seconds=7)
        assert sweeper.next_delay() == 7

    def test_cron_delay(self, registry, gateway, ledger):
        sweeper = _make_sweeper(registry, gateway, ledger, sweep_schedule="*/5 * * * *")
        assert sweeper.next_delay(datetime(2026, 3, 1, 12, 3, 0)) == 120.0

    def test_invalid_cron_falls_back_to_interval(self, registry, gateway, ledger):
        sweeper = _make_sweeper(
            registry, gateway, ledger, sweep_schedule="not a cron", sweep_interval_seconds=4,
        )
        assert sweeper.next_delay() == 4

    def test_sweep_once(self, registry, gateway, ledger):
        sweeper = _make_sweeper(registry, gateway, ledger)
        action = _overdue_proposal(sweeper.coordinator)

        assert sweeper.sweep_once() == [action.id]
        assert sweeper.sweeps == 1
        assert sweeper.coordinator.get_session(action.id).state == SessionState.EXPIRED

    def test_run_until_stopped(self, registry, gateway, ledger):
        sweeper = _make_sweeper(registry, gateway, ledger, sweep_interval_seconds=0.01)
        action = _overdue_proposal(sweeper.coordinator)

        async def scenario():
            stop = asyncio.Event()
            task = asyncio.create_task(sweeper.run_async(stop))
            await asyncio.sleep(0.05)
            assert sweeper.status == "running"
            stop.set()
            await task

        asyncio.run(scenario())

        assert sweeper.status == "stopped"
        assert sweeper.sweeps >= 1
        assert sweeper.coordinator.get_session(action.id).state == SessionState.EXPIRED
