# ============================================================================
# CONDITION AWAITER TESTS
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Tests - Readiness polling state machine
# PURPOSE: Verify existence polarity, ANY/ALL groups, timeouts, dry-run
#          and cancellation
# ============================================================================
"""
Condition Awaiter Tests

The Kubernetes client is an AsyncMock, the retry interval is 1ms.

Run with:
    pytest tests/test_awaiter.py -v
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.contracts import AwaitState, ConditionOperator, JsonPointerOperator
from core.errors import AggregateDeploymentError, AwaitTimeoutError
from core.models import AwaitCondition, AwaitConditions, Descriptor, LoadedDescriptor
from infrastructure.kube_client import KubeResponse, dry_run_response
from orchestrator.awaiter import ConditionAwaiter, DescriptorWait


RUNNING = {"status": {"phase": "Running", "conditions": [{"type": "Ready", "status": "True"}]}}
PENDING = {"status": {"phase": "Pending"}}


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def kube():
    client = MagicMock()
    client.exists = AsyncMock(return_value=True)
    client.get_resources = AsyncMock(return_value=[KubeResponse(status_code=200, body=RUNNING)])
    return client


@pytest.fixture
def awaiter(kube):
    return ConditionAwaiter(kube, retry_interval_seconds=0.001)


def descriptor(name="svc", await_=False, groups=None):
    return LoadedDescriptor(
        configuration=Descriptor(name=name, await_=await_, await_conditions=groups or []),
        content=f"apiVersion: v1\nkind: Service\nmetadata:\n  name: {name}\n",
    )


def phase(value, operator=JsonPointerOperator.EQUALS):
    return AwaitCondition(pointer="/status/phase", operator_type=operator, value=value)


def group(*conditions, operator=ConditionOperator.ALL, command=None):
    return AwaitConditions(operator=operator, command=command, conditions=list(conditions))


# ============================================================================
# STATE MACHINE
# ============================================================================

class TestDescriptorWait:
    """Tests for DescriptorWait transitions."""

    def test_lifecycle(self):
        wait = DescriptorWait(command="apply", descriptor_name="svc")
        wait.mark_polling()
        assert wait.started_at is not None
        wait.mark_satisfied()
        assert wait.state == AwaitState.SATISFIED
        assert wait.completed_at is not None

    def test_terminal_state_is_final(self):
        wait = DescriptorWait(command="apply", descriptor_name="svc")
        wait.mark_satisfied()
        with pytest.raises(ValueError, match="Cannot transition"):
            wait.mark_polling()

    def test_cannot_time_out_before_polling(self):
        wait = DescriptorWait(command="apply", descriptor_name="svc")
        assert not wait.can_transition_to(AwaitState.TIMED_OUT)


# ============================================================================
# EXISTENCE
# ============================================================================

class TestExistence:
    """Tests for `await: true` existence polling."""

    def test_nothing_to_await(self, awaiter, kube):
        wait = asyncio.run(awaiter.await_descriptor("apply", descriptor()))

        assert wait.state == AwaitState.SATISFIED
        assert wait.ticks == 0
        kube.exists.assert_not_called()
        kube.get_resources.assert_not_called()

    def test_waits_for_existence(self, awaiter, kube):
        kube.exists.side_effect = [False, False, True]

        wait = asyncio.run(awaiter.await_descriptor("apply", descriptor(await_=True), timeout_seconds=5))

        assert wait.state == AwaitState.SATISFIED
        assert wait.ticks == 3

    def test_delete_expects_absence(self, awaiter, kube):
        kube.exists.side_effect = [True, False]

        wait = asyncio.run(awaiter.await_descriptor("delete", descriptor(await_=True), timeout_seconds=5))

        assert wait.state == AwaitState.SATISFIED
        assert wait.ticks == 2

    def test_custom_command_expects_existence(self, awaiter, kube):
        kube.exists.return_value = True

        wait = asyncio.run(awaiter.await_descriptor("restart", descriptor(await_=True), timeout_seconds=5))

        assert wait.state == AwaitState.SATISFIED

    def test_timeout(self, awaiter, kube):
        kube.exists.return_value = False

        with pytest.raises(AwaitTimeoutError) as exc_info:
            asyncio.run(awaiter.await_descriptor("apply", descriptor(await_=True), timeout_seconds=0.02))

        assert exc_info.value.descriptor_name == "svc"
        assert "resource exists" in str(exc_info.value)
        wait = awaiter.waits[("apply", "svc")]
        assert wait.state == AwaitState.TIMED_OUT
        assert "Timeout awaiting svc" in wait.error_message

    def test_fetch_errors_are_retried(self, awaiter, kube):
        kube.exists.side_effect = [ConnectionError("refused"), True]

        wait = asyncio.run(awaiter.await_descriptor("apply", descriptor(await_=True), timeout_seconds=5))

        assert wait.state == AwaitState.SATISFIED
        assert kube.exists.await_count == 2


# ============================================================================
# CONDITION GROUPS
# ============================================================================

class TestConditionGroups:
    """Tests for awaitConditions."""

    def test_all_satisfied(self, awaiter, kube):
        target = descriptor(groups=[group(phase("Running"), AwaitCondition(
            type="STATUS_CONDITION", condition_type="Ready", value="True",
        ))])

        wait = asyncio.run(awaiter.await_descriptor("apply", target, timeout_seconds=5))

        assert wait.state == AwaitState.SATISFIED
        kube.exists.assert_not_called()

    def test_all_requires_every_condition(self, awaiter):
        target = descriptor(groups=[group(phase("Running"), phase("Succeeded"))])

        with pytest.raises(AggregateDeploymentError, match="Succeeded"):
            asyncio.run(awaiter.await_descriptor("apply", target, timeout_seconds=0.02))

    def test_any_needs_one_condition(self, awaiter):
        target = descriptor(groups=[group(phase("Succeeded"), phase("Running"), operator=ConditionOperator.ANY)])

        wait = asyncio.run(awaiter.await_descriptor("apply", target, timeout_seconds=5))

        assert wait.state == AwaitState.SATISFIED

    def test_any_fails_when_every_condition_fails(self, awaiter):
        target = descriptor(groups=[group(phase("Succeeded"), phase("Failed"), operator=ConditionOperator.ANY)])

        with pytest.raises(AggregateDeploymentError) as exc_info:
            asyncio.run(awaiter.await_descriptor("apply", target, timeout_seconds=0.02))

        assert all(isinstance(e, AwaitTimeoutError) for e in exc_info.value.errors)

    def test_groups_are_conjoined(self, awaiter):
        target = descriptor(groups=[group(phase("Running")), group(phase("Succeeded"))])

        with pytest.raises(AggregateDeploymentError) as exc_info:
            asyncio.run(awaiter.await_descriptor("apply", target, timeout_seconds=0.02))

        assert [type(e) for e in exc_info.value.errors] == [AwaitTimeoutError]

    def test_condition_becomes_true(self, awaiter, kube):
        kube.get_resources.side_effect = [
            [KubeResponse(status_code=200, body=PENDING)],
            [KubeResponse(status_code=404, body={})],
            [KubeResponse(status_code=200, body=RUNNING)],
        ]
        target = descriptor(groups=[group(phase("Running"))])

        wait = asyncio.run(awaiter.await_descriptor("apply", target, timeout_seconds=5))

        assert wait.state == AwaitState.SATISFIED
        assert wait.ticks == 3

    def test_missing_pointer(self, awaiter, kube):
        kube.get_resources.return_value = [KubeResponse(status_code=200, body=PENDING)]
        target = descriptor(groups=[group(AwaitCondition(
            pointer="/status/readyReplicas", operator_type=JsonPointerOperator.MISSING,
        ))])

        wait = asyncio.run(awaiter.await_descriptor("apply", target, timeout_seconds=5))

        assert wait.state == AwaitState.SATISFIED

    def test_exists_pointer_waits(self, awaiter, kube):
        kube.get_resources.return_value = [KubeResponse(status_code=200, body=PENDING)]
        target = descriptor(groups=[group(AwaitCondition(
            pointer="/status/readyReplicas", operator_type=JsonPointerOperator.EXISTS,
        ))])

        with pytest.raises(AwaitTimeoutError, match="/status/readyReplicas"):
            asyncio.run(awaiter.await_descriptor("apply", target, timeout_seconds=0.02))

    def test_dry_run_is_satisfied(self, awaiter, kube):
        kube.get_resources.return_value = [dry_run_response()]
        target = descriptor(groups=[group(phase("Succeeded"))])

        wait = asyncio.run(awaiter.await_descriptor("apply", target, timeout_seconds=5))

        assert wait.state == AwaitState.SATISFIED

    def test_groups_filtered_by_command(self, awaiter, kube):
        target = descriptor(groups=[group(phase("Succeeded"), command="delete")])

        wait = asyncio.run(awaiter.await_descriptor("apply", target, timeout_seconds=5))

        assert wait.state == AwaitState.SATISFIED
        kube.get_resources.assert_not_called()

    def test_existence_checked_before_conditions(self, awaiter, kube):
        calls = []
        kube.exists.side_effect = lambda *args: calls.append("exists") or True

        async def resources(*args):
            calls.append("conditions")
            return [KubeResponse(status_code=200, body=RUNNING)]

        kube.get_resources.side_effect = resources
        target = descriptor(await_=True, groups=[group(phase("Running"))])

        asyncio.run(awaiter.await_descriptor("apply", target, timeout_seconds=5))

        assert calls == ["exists", "conditions"]


# ============================================================================
# CANCELLATION
# ============================================================================

class TestCancellation:
    """Tests for abandoned waits."""

    def test_cancelled_wait_stops_polling(self, awaiter, kube):
        kube.exists.return_value = False

        async def run_test():
            task = asyncio.ensure_future(
                awaiter.await_descriptor("apply", descriptor(await_=True), timeout_seconds=60)
            )
            await asyncio.sleep(0.02)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            calls = kube.exists.await_count
            await asyncio.sleep(0.02)
            return calls

        calls = asyncio.run(run_test())

        assert awaiter.waits[("apply", "svc")].state == AwaitState.CANCELLED
        assert kube.exists.await_count == calls

    def test_any_cancels_remaining_conditions(self, awaiter, kube):
        target = descriptor(groups=[group(phase("Running"), phase("Succeeded"), operator=ConditionOperator.ANY)])

        async def run_test():
            await awaiter.await_descriptor("apply", target, timeout_seconds=60)
            calls = kube.get_resources.await_count
            await asyncio.sleep(0.02)
            return calls

        calls = asyncio.run(run_test())

        assert kube.get_resources.await_count == calls
