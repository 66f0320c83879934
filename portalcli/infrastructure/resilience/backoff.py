"""Retry/backoff decision function.

Exponential backoff with jitter for transient failures (transport errors,
timeouts, 5xx). The delay is computed here and slept by the request
pipeline, so this module performs no I/O and is deterministic under a
seeded random source.
"""

import logging
import random
from typing import Optional

from portalcli.domain.models.call import AttemptContext, AttemptResult, RetryDecision, RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_POLICY = RetryPolicy()
NO_RETRY = RetryDecision(should_retry=False, delay_ms=0.0)


def is_transient(outcome: AttemptResult) -> bool:
    """Transport errors and server errors may succeed on a later attempt."""
    return outcome.is_transport_error or outcome.is_server_error


def backoff_delay_ms(retry_count: int, base_delay_ms: float, rng: Optional[random.Random] = None) -> float:
    """base * 2^retry_count plus a jitter drawn from [0, base)."""
    source = rng or random
    return base_delay_ms * (2 ** retry_count) + source.random() * base_delay_ms


def decide(
    outcome: AttemptResult,
    context: AttemptContext,
    policy: RetryPolicy = DEFAULT_POLICY,
    rng: Optional[random.Random] = None,
) -> RetryDecision:
    """Decides whether a failed attempt should be retried and after what delay.

    Args:
        outcome: What the last dispatch produced.
        context: The logical call's attempt state; only retry_count is read.
        policy: Retry budget and base delay.
        rng: Optional random source for the jitter (seed it in tests).

    Returns:
        A RetryDecision. 401s are never retried here; the pipeline's refresh
        flow owns them.
    """
    if outcome.is_unauthorized:
        return NO_RETRY

    if is_transient(outcome) and context.retry_count < policy.max_retries:
        delay = backoff_delay_ms(context.retry_count, policy.base_delay_ms, rng)
        logger.debug(
            f"Retry {context.retry_count + 1}/{policy.max_retries} approved for request "
            f"{context.request_id} after {delay:.0f}ms"
        )
        return RetryDecision(should_retry=True, delay_ms=delay)

    return NO_RETRY
