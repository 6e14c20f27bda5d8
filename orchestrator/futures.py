# ============================================================================
# FAN-OUT COMBINATORS
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Core - "wait for all" with failure aggregation
# PURPOSE: Await concurrent tasks, reporting every failure
# ============================================================================
"""
Fan-out Combinators

`gather_all` waits for every awaitable to settle before deciding. A single
broken descriptor never hides the failures of its siblings: all errors are
reported together in one AggregateDeploymentError.
"""

import asyncio
import logging
from typing import Any, Awaitable, Iterable, List, Optional

from core.errors import AggregateDeploymentError

logger = logging.getLogger(__name__)


async def gather_all(aws: Iterable[Awaitable[Any]], message: Optional[str] = None) -> List[Any]:
    """
    Await all awaitables concurrently, never failing fast.

    Args:
        aws: Coroutines, tasks or futures
        message: Prefix of the aggregated error message

    Returns:
        Results in input order

    Raises:
        AggregateDeploymentError: If at least one awaitable failed
        asyncio.CancelledError: If the caller itself is cancelled
    """
    aws = list(aws)
    if not aws:
        return []

    results = await asyncio.gather(*aws, return_exceptions=True)

    errors = [r for r in results if isinstance(r, BaseException)]
    if errors:
        logger.debug(f"{len(errors)} of {len(aws)} awaitable(s) failed")
        # a single nested aggregate is already descriptive enough
        if len(errors) == 1 and isinstance(errors[0], AggregateDeploymentError) and message is None:
            raise errors[0]
        raise AggregateDeploymentError(errors, message)
    return list(results)


__all__ = [
    "gather_all",
]
