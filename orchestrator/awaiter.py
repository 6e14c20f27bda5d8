# ============================================================================
# CONDITION AWAITER
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Core - Readiness polling state machine
# PURPOSE: Block an ordering group until its descriptors reach their
#          await conditions, or fail with a descriptive timeout
# ============================================================================
"""
Condition Awaiter

One wait per (command, descriptor):

    IDLE -> POLLING -> SATISFIED | TIMED_OUT | CANCELLED

1. `await: true` first polls the resource existence (absence for delete)
2. Await condition groups matching the command are then polled, every
   group must hold; inside a group conditions combine with ALL or ANY
3. Each condition polls on its own coroutine at a fixed interval until
   satisfied or the deadline (computed once) passes

Dry-run responses are always satisfied. Fetch errors are logged and the
condition is retried until the deadline.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from core.config import get_defaults
from core.contracts import AwaitState, Command, ConditionOperator
from core.errors import AggregateDeploymentError, AwaitTimeoutError
from core.logging import ComponentType, get_logger
from core.models import AwaitCondition, AwaitConditions, LoadedDescriptor
from infrastructure.kube_client import KubeClient
from orchestrator.engine.conditions import AwaitConditionEvaluator
from orchestrator.futures import gather_all

logger = get_logger(__name__, ComponentType.AWAITER)


# ============================================================================
# STATE
# ============================================================================

@dataclass
class DescriptorWait:
    """State of one (command, descriptor) wait."""
    command: str
    descriptor_name: str
    state: AwaitState = AwaitState.IDLE
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    ticks: int = 0

    def can_transition_to(self, new_state: AwaitState) -> bool:
        """
        Validate if a state transition is allowed.

        Valid transitions:
            IDLE -> POLLING, SATISFIED (nothing to await), CANCELLED
            POLLING -> SATISFIED, TIMED_OUT, CANCELLED
            SATISFIED, TIMED_OUT, CANCELLED -> (none, terminal)
        """
        allowed = {
            AwaitState.IDLE: {AwaitState.POLLING, AwaitState.SATISFIED, AwaitState.CANCELLED},
            AwaitState.POLLING: {AwaitState.SATISFIED, AwaitState.TIMED_OUT, AwaitState.CANCELLED},
        }
        return new_state in allowed.get(self.state, set())

    def _transition(self, new_state: AwaitState) -> None:
        if not self.can_transition_to(new_state):
            raise ValueError(f"Cannot transition from {self.state} to {new_state}")
        self.state = new_state
        if new_state == AwaitState.POLLING:
            self.started_at = datetime.utcnow()
        elif new_state.is_terminal():
            self.completed_at = datetime.utcnow()

    def mark_polling(self) -> None:
        self._transition(AwaitState.POLLING)

    def mark_satisfied(self) -> None:
        self._transition(AwaitState.SATISFIED)

    def mark_timed_out(self, error_message: str) -> None:
        self._transition(AwaitState.TIMED_OUT)
        self.error_message = error_message

    def mark_cancelled(self) -> None:
        self._transition(AwaitState.CANCELLED)


# ============================================================================
# AWAITER
# ============================================================================

class ConditionAwaiter:
    """
    Polls the cluster until descriptors are ready.

    Usage:
        awaiter = ConditionAwaiter(kube)
        await awaiter.await_descriptor("apply", descriptor, timeout_seconds=60)
    """

    def __init__(
        self,
        kube: KubeClient,
        evaluator: Optional[AwaitConditionEvaluator] = None,
        retry_interval_seconds: Optional[float] = None,
    ):
        defaults = get_defaults().awaiter
        self.kube = kube
        self.evaluator = evaluator or AwaitConditionEvaluator()
        self.retry_interval_seconds = (
            retry_interval_seconds if retry_interval_seconds is not None
            else defaults.retry_interval_seconds
        )
        self.waits: Dict[Tuple[str, str], DescriptorWait] = {}

    async def await_descriptor(
        self,
        command: str,
        descriptor: LoadedDescriptor,
        timeout_seconds: Optional[float] = None,
    ) -> DescriptorWait:
        """
        Wait until a descriptor satisfies its await configuration.

        Args:
            command: Current command (apply, delete or a custom one)
            descriptor: Prepared descriptor
            timeout_seconds: Timeout (defaults to the descriptor await timeout)

        Returns:
            The terminal DescriptorWait

        Raises:
            AwaitTimeoutError: If a condition is not met in time
            AggregateDeploymentError: If several conditions failed
        """
        if timeout_seconds is None:
            timeout_seconds = get_defaults().awaiter.descriptor_await_timeout_seconds

        configuration = descriptor.configuration
        wait = DescriptorWait(command=command, descriptor_name=configuration.name)
        self.waits[(command, configuration.name)] = wait

        groups = [g for g in configuration.await_conditions if g.applies_to(command)]
        if not configuration.await_ and not groups:
            wait.mark_satisfied()
            return wait

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds
        wait.mark_polling()
        try:
            if configuration.await_:
                # only delete expects the resource to be gone
                expected = command != Command.DELETE.value
                await self._poll(wait, descriptor, deadline, "resource exists",
                                 lambda: self._exists(descriptor, expected))
            await _all([self._await_group(wait, descriptor, deadline, g) for g in groups])
        except asyncio.CancelledError:
            wait.mark_cancelled()
            raise
        except Exception as e:
            wait.mark_timed_out(str(e))
            raise

        wait.mark_satisfied()
        logger.debug(f"Descriptor {configuration.name} ready ({command})")
        return wait

    async def _await_group(
        self,
        wait: DescriptorWait,
        descriptor: LoadedDescriptor,
        deadline: float,
        group: AwaitConditions,
    ) -> None:
        if not group.conditions:
            return

        coros = [
            self._poll(wait, descriptor, deadline, condition.describe(),
                       lambda c=condition: self._check(descriptor, c))
            for condition in group.conditions
        ]
        if group.operator == ConditionOperator.ANY:
            await _any(coros)
        else:
            await _all(coros)

    async def _poll(
        self,
        wait: DescriptorWait,
        descriptor: LoadedDescriptor,
        deadline: float,
        description: str,
        check: Callable[[], Awaitable[bool]],
    ) -> None:
        """Tick until check() holds, raise once the deadline passed."""
        loop = asyncio.get_running_loop()
        name = descriptor.configuration.name
        while True:
            await asyncio.sleep(self.retry_interval_seconds)
            wait.ticks += 1
            try:
                ok = await check()
            except Exception as e:
                logger.debug(f"Waiting for {name}: {e}")
                ok = False

            if ok:
                logger.debug(f"Condition for descriptor {name} reached: {description}")
                return
            if loop.time() >= deadline:
                logger.debug(f"Timeout on condition {name}: {description}")
                raise AwaitTimeoutError(name, description)
            logger.debug(f"Will retry the condition {description} for descriptor {name}")

    async def _exists(self, descriptor: LoadedDescriptor, expected: bool) -> bool:
        return expected == await self.kube.exists(descriptor.content, descriptor.extension)

    async def _check(self, descriptor: LoadedDescriptor, condition: AwaitCondition) -> bool:
        responses = await self.kube.get_resources(descriptor.content, descriptor.extension)
        if any(r.is_dry_run for r in responses):
            return True
        if any(r.status_code != 200 for r in responses):
            return False
        return any(self.evaluator.is_satisfied(condition, r.body or {}) for r in responses)


# ============================================================================
# COMBINATORS
# ============================================================================

async def _all(coros: List[Awaitable[None]]) -> None:
    """Every coroutine must succeed, a single failure is raised as is."""
    if len(coros) == 1:
        await coros[0]
    elif coros:
        await gather_all(coros, message="Awaiting conditions failed")


async def _any(coros: List[Awaitable[None]]) -> None:
    """First success wins and stops the others, fails only if all fail."""
    pending = {asyncio.ensure_future(c) for c in coros}
    errors: List[BaseException] = []
    try:
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task.exception() is None:
                    return
                errors.append(task.exception())
    finally:
        for task in pending:
            task.cancel()
    if len(errors) == 1:
        raise errors[0]
    raise AggregateDeploymentError(errors, "Awaiting conditions failed")


__all__ = [
    "ConditionAwaiter",
    "DescriptorWait",
]
