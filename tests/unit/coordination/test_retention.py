"""Tests for the retention policy and RetentionController.

Tests cover:
- Parsing idle termination values (blank, malformed, signed)
- Billing period arithmetic
- Idle-minutes strategy (p > 0)
- Billing-period strategy (p < 0)
- Short-circuits: never terminate, unattached, offline, busy
- The disable switch
- Non-blocking per-node check gate
- Transient uptime failures
"""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from swarm_fleet.coordination.base_config import RetentionConfig
from swarm_fleet.coordination.retention import (
    DEFAULT_IDLE_TERMINATION_MINUTES,
    RetentionController,
    RetentionPolicy,
    free_seconds_left,
    parse_idle_termination_minutes,
)
from swarm_fleet.utils.exceptions import TransientProbeFailure


# =============================================================================
# Policy parsing
# =============================================================================


class TestParseIdleTerminationMinutes:
    """Tests for parse_idle_termination_minutes."""

    def test_malformed_falls_back_to_default(self):
        assert parse_idle_termination_minutes("abc") == 30
        assert DEFAULT_IDLE_TERMINATION_MINUTES == 30

    def test_malformed_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            parse_idle_termination_minutes("ten")
        assert "Malformed idle termination value" in caplog.text

    def test_empty_means_never(self):
        assert parse_idle_termination_minutes("") == 0

    def test_blank_means_never(self):
        assert parse_idle_termination_minutes("   ") == 0

    def test_none_means_never(self):
        assert parse_idle_termination_minutes(None) == 0

    def test_positive(self):
        assert parse_idle_termination_minutes("15") == 15

    def test_negative(self):
        assert parse_idle_termination_minutes("-10") == -10

    def test_surrounding_whitespace(self):
        assert parse_idle_termination_minutes(" 7 ") == 7

    def test_int_passthrough(self):
        assert parse_idle_termination_minutes(-5) == -5


class TestRetentionPolicy:
    """Tests for RetentionPolicy."""

    def test_frozen(self):
        policy = RetentionPolicy(10)
        with pytest.raises(AttributeError):
            policy.idle_termination_minutes = 20

    def test_parse(self):
        assert RetentionPolicy.parse("abc") == RetentionPolicy(30)

    def test_flags(self):
        assert RetentionPolicy(0).never_terminate
        assert RetentionPolicy(-1).uses_billing_period
        assert not RetentionPolicy(1).uses_billing_period

    def test_idle_expired_is_strict(self):
        policy = RetentionPolicy(30)
        assert not policy.idle_expired(30 * 60)
        assert policy.idle_expired(30 * 60 + 1)


class TestFreeSecondsLeft:
    """Tests for billing period arithmetic."""

    def test_fifty_minutes_in(self):
        assert free_seconds_left(3000) == 600

    def test_fresh_period(self):
        assert free_seconds_left(0) == 3600
        assert free_seconds_left(3600) == 3600

    def test_last_second(self):
        assert free_seconds_left(7199) == 1

    def test_fractional_uptime_truncated(self):
        assert free_seconds_left(3000.9) == 600

    def test_custom_period(self):
        assert free_seconds_left(50, billing_period_seconds=60) == 10


# =============================================================================
# RetentionController
# =============================================================================


@pytest.fixture
def controller(retention_config, clock):
    return RetentionController(retention_config, clock=clock)


@pytest.fixture
def idle_node(make_node, make_worker):
    """Factory: attached node whose worker has been idle for `idle_minutes`."""

    def _make(policy, idle_minutes=0.0, instance_id="i-0123", **worker_kwargs):
        node = make_node(instance_id=instance_id, idle_termination_minutes=policy)
        worker = make_worker(instance_id=instance_id, idle_minutes=idle_minutes, **worker_kwargs)
        node.set_bound_worker(worker)
        return node

    return _make


class TestCheckReturnValue:
    """check() always asks to be called again."""

    @pytest.mark.asyncio
    async def test_returns_check_interval(self, controller, idle_node):
        assert await controller.check(idle_node(30)) == 60.0

    @pytest.mark.asyncio
    async def test_returns_interval_after_trigger(self, controller, idle_node):
        assert await controller.check(idle_node(1, idle_minutes=5)) == 60.0


class TestNeverTerminate:
    """Policy 0 never triggers."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("idle_minutes", [0, 61, 10_000])
    async def test_zero_policy(self, controller, idle_node, provider, idle_minutes):
        node = idle_node(0, idle_minutes=idle_minutes)

        await controller.check(node)

        assert provider.terminate_calls == []
        assert not node.terminated


class TestIdleMinutesPolicy:
    """Tests for policy > 0."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "policy,idle_minutes,expected",
        [
            (30, 31, True),
            (30, 30.01, True),
            (30, 30, False),
            (30, 29, False),
            (1, 0, False),
        ],
    )
    async def test_triggers_iff_idle_longer_than_policy(
        self, controller, idle_node, provider, policy, idle_minutes, expected
    ):
        node = idle_node(policy, idle_minutes=idle_minutes)

        await controller.check(node)

        assert (provider.terminate_calls == ["i-0123"]) is expected
        assert node.terminated is expected

    @pytest.mark.asyncio
    async def test_trigger_removes_node(self, controller, idle_node, registry):
        await controller.check(idle_node(5, idle_minutes=10))
        assert registry.get_node("i-0123") is None

    @pytest.mark.asyncio
    async def test_busy_worker_not_terminated(self, controller, idle_node, provider):
        node = idle_node(5, idle_minutes=60, is_idle=False)

        await controller.check(node)

        assert provider.terminate_calls == []

    @pytest.mark.asyncio
    async def test_offline_worker_not_terminated(self, controller, idle_node, provider):
        """Stale idle state on an offline worker never triggers."""
        node = idle_node(5, idle_minutes=60, is_offline=True)

        await controller.check(node)

        assert provider.terminate_calls == []

    @pytest.mark.asyncio
    async def test_idle_duration_uses_clock(self, controller, idle_node, provider, clock):
        node = idle_node(10, idle_minutes=9)
        await controller.check(node)
        assert provider.terminate_calls == []

        clock.advance(120)
        await controller.check(node)
        assert provider.terminate_calls == ["i-0123"]


class TestBillingPeriodPolicy:
    """Tests for policy < 0."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "uptime,expected",
        [
            (3000, True),          # 600s left, 600 <= 600
            (2999, False),         # 601s left
            (3599, True),          # 1s left
            (3600, False),         # fresh period
            (3600 + 3000, True),   # second hour, 600s left
            (120, False),
        ],
    )
    async def test_triggers_iff_free_time_within_policy(
        self, controller, idle_node, provider, clock, uptime, expected
    ):
        provider.add_instance("i-bill", launched_at=clock() - uptime)
        node = idle_node(-10, instance_id="i-bill")

        await controller.check(node)

        assert (provider.terminate_calls == ["i-bill"]) is expected

    @pytest.mark.asyncio
    async def test_ignores_idle_minutes(self, controller, idle_node, provider):
        """A worker idle for zero minutes still goes when the period ends."""
        node = idle_node(-10, idle_minutes=0)

        await controller.check(node)

        assert provider.terminate_calls == ["i-0123"]

    @pytest.mark.asyncio
    async def test_offline_worker_not_terminated(self, controller, idle_node, provider):
        node = idle_node(-10, is_offline=True)

        await controller.check(node)

        assert provider.terminate_calls == []
        assert provider.describe_calls == 0

    @pytest.mark.asyncio
    async def test_uptime_failure_skips_cycle(self, controller, idle_node, provider):
        node = idle_node(-10)
        provider.fail_describe = True

        assert await controller.check(node) == 60.0
        assert provider.terminate_calls == []

        provider.fail_describe = False
        await controller.check(node)
        assert provider.terminate_calls == ["i-0123"]

    @pytest.mark.asyncio
    async def test_interrupted_uptime_read_skips_cycle(self, controller, idle_node, provider):
        node = idle_node(-10)

        with patch.object(node, "get_uptime", new_callable=AsyncMock) as mock_uptime:
            mock_uptime.side_effect = InterruptedError("interrupted")
            await controller.check(node)

        assert provider.terminate_calls == []
        assert node.try_acquire_check() is True
        node.release_check()

    @pytest.mark.asyncio
    async def test_billing_period_from_config(self, idle_node, provider, clock):
        config = RetentionConfig(billing_period_seconds=60)
        controller = RetentionController(config, clock=clock)
        provider.add_instance("i-minute", launched_at=clock() - 55)
        node = idle_node(-1, instance_id="i-minute")

        await controller.check(node)

        assert provider.terminate_calls == ["i-minute"]


class TestUnattached:
    """Nodes without a bound worker are left alone."""

    @pytest.mark.asyncio
    async def test_unattached_node_is_noop(self, controller, make_node, provider, caplog):
        node = make_node(idle_termination_minutes=1)

        with caplog.at_level(logging.INFO):
            await controller.check(node)

        assert provider.terminate_calls == []
        assert "not attached yet" in caplog.text


class TestDisableSwitch:
    """RetentionConfig.disabled suppresses idle-based termination only."""

    @pytest.fixture
    def disabled_controller(self, clock):
        return RetentionController(RetentionConfig(disabled=True), clock=clock)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("policy", [5, -10])
    async def test_suppresses_idle_branches(self, disabled_controller, idle_node, provider, policy):
        node = idle_node(policy, idle_minutes=600)

        await disabled_controller.check(node)

        assert provider.terminate_calls == []

    @pytest.mark.asyncio
    async def test_short_circuits_unchanged(self, disabled_controller, idle_node):
        assert await disabled_controller._check(idle_node(5, is_offline=True)) == "offline"

    @pytest.mark.asyncio
    async def test_not_idle_short_circuit_unchanged(self, disabled_controller, idle_node):
        assert await disabled_controller._check(idle_node(5, is_idle=False)) == "not_idle"

    @pytest.mark.asyncio
    async def test_from_env(self, clock):
        with patch.dict("os.environ", {"SWARM_RETENTION_DISABLED": "true"}):
            config = RetentionConfig.from_env()
        assert config.disabled is True

    @pytest.mark.asyncio
    async def test_per_instance(self, idle_node, provider, clock):
        """Two controllers in one process can disagree."""
        enabled = RetentionController(RetentionConfig(), clock=clock)
        disabled = RetentionController(RetentionConfig(disabled=True), clock=clock)
        node = idle_node(5, idle_minutes=60)

        await disabled.check(node)
        assert provider.terminate_calls == []
        await enabled.check(node)
        assert provider.terminate_calls == ["i-0123"]


class TestCheckGate:
    """Overlapping checks for one node are skipped, not queued."""

    @pytest.mark.asyncio
    async def test_skips_when_check_in_flight(self, controller, idle_node, provider):
        node = idle_node(5, idle_minutes=60)
        assert node.try_acquire_check()

        try:
            assert await controller.check(node) == 60.0
        finally:
            node.release_check()

        assert provider.terminate_calls == []
        assert provider.describe_calls == 0

    @pytest.mark.asyncio
    async def test_concurrent_checks_evaluate_once(self, controller, idle_node):
        node = idle_node(5, idle_minutes=60)
        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow_idle_timeout():
            entered.set()
            await release.wait()

        node.idle_timeout = MagicMock(side_effect=slow_idle_timeout)

        first = asyncio.ensure_future(controller.check(node))
        await entered.wait()

        # Returns immediately while the first check is still running
        assert await asyncio.wait_for(controller.check(node), timeout=1.0) == 60.0

        release.set()
        await first
        assert node.idle_timeout.call_count == 1

    @pytest.mark.asyncio
    async def test_gate_released_after_check(self, controller, idle_node):
        node = idle_node(30)
        await controller.check(node)
        assert node.try_acquire_check() is True
        node.release_check()

    @pytest.mark.asyncio
    async def test_gate_released_on_error(self, controller, idle_node):
        node = idle_node(5, idle_minutes=60)
        node.idle_timeout = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await controller.check(node)

        assert node.try_acquire_check() is True
        node.release_check()

    @pytest.mark.asyncio
    async def test_separate_nodes_independent(self, controller, idle_node, provider, make_worker):
        node_a = idle_node(5, idle_minutes=60)
        provider.add_instance("i-b")
        node_b = idle_node(5, idle_minutes=60, instance_id="i-b")
        assert node_a.try_acquire_check()

        try:
            await controller.check(node_b)
        finally:
            node_a.release_check()

        assert provider.terminate_calls == ["i-b"]


class TestStart:
    """start() connects eagerly."""

    def test_start_connects(self, controller):
        node = MagicMock()
        node.name = "Swarm builder (i-0123)"

        controller.start(node)

        node.connect.assert_called_once_with()


class TestTransientProbeFailure:
    """TransientProbeFailure from get_uptime is not surfaced."""

    @pytest.mark.asyncio
    async def test_not_raised(self, controller, idle_node):
        node = idle_node(-10)
        node.get_uptime = AsyncMock(side_effect=TransientProbeFailure("slow"))
        assert await controller.check(node) == 60.0
