"""API Resilience Implementations.

Contains the retry/backoff decision function and the mock fallback policy.
Bounded Context: API Resilience
"""
