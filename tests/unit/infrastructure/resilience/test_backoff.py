import random

import pytest

from portalcli.domain.models.call import AttemptContext, AttemptResult, RetryPolicy
from portalcli.infrastructure.resilience.backoff import backoff_delay_ms, decide, is_transient
from portalcli.infrastructure.resilience.mock_fallback import MockFallbackResolver

POLICY = RetryPolicy(max_retries=3, base_delay_ms=1000)


def _context(retry_count: int) -> AttemptContext:
    return AttemptContext(retry_count=retry_count)


@pytest.mark.parametrize("retry_count", [0, 1, 2])
def test_delay_window(retry_count):
    rng = random.Random(7)
    for _ in range(50):
        delay = backoff_delay_ms(retry_count, 1000, rng)
        assert 2 ** retry_count * 1000 <= delay < 2 ** retry_count * 1000 + 1000


def test_seeded_rng_is_deterministic():
    first = backoff_delay_ms(1, 500, random.Random(3))
    second = backoff_delay_ms(1, 500, random.Random(3))
    assert first == second


@pytest.mark.parametrize("outcome", [
    AttemptResult(status=500),
    AttemptResult(status=503),
    AttemptResult(transport_error="ConnectTimeout: timed out"),
])
def test_transient_outcomes_are_retried(outcome):
    decision = decide(outcome, _context(0), POLICY, random.Random(1))
    assert decision.should_retry is True
    assert 1000 <= decision.delay_ms < 2000


@pytest.mark.parametrize("status", [400, 403, 404, 409, 422])
def test_client_errors_are_not_retried(status):
    outcome = AttemptResult(status=status)
    assert not is_transient(outcome)
    assert decide(outcome, _context(0), POLICY).should_retry is False


def test_unauthorized_is_left_to_the_refresh_flow():
    assert decide(AttemptResult(status=401), _context(0), POLICY).should_retry is False


def test_budget_is_respected():
    outcome = AttemptResult(status=502)
    assert decide(outcome, _context(2), POLICY).should_retry is True
    assert decide(outcome, _context(3), POLICY).should_retry is False


def test_zero_retry_policy():
    decision = decide(AttemptResult(status=500), _context(0), RetryPolicy(max_retries=0))
    assert decision.should_retry is False
    assert decision.delay_ms == 0


def test_mock_fallback_defaults_to_disabled():
    assert MockFallbackResolver().permitted() is False
    assert MockFallbackResolver(permitted=True).permitted() is True
