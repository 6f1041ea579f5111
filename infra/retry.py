"""
ESG Reporting — Deferred Work Retry with Backoff

Wraps deferred continuations (step progression, reprocessing, artifact
regeneration) with:
  - Configurable retry on transient failures
  - Exponential backoff between retries, with jitter
  - An exhaustion hook so the caller can park the cycle in a
    well-defined state instead of losing the work silently
  - Structured logging of every attempt

Retries are rescheduled on the same scheduler that ran the failed
attempt; nothing here sleeps.

Usage:
    from infra.retry import schedule_with_retry, policy_from_config

    policy = policy_from_config(cfg)
    schedule_with_retry(scheduler, 3.0, reprocess, policy,
                        label="reprocess:cycle-2026-01",
                        on_exhausted=park_cycle)
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger("esg_reporting.retry")


# ═══════════════════════════════════════════════════════════════════
# Retry Policy
# ═══════════════════════════════════════════════════════════════════

@dataclass
class RetryPolicy:
    """Configuration for deferred-work retry behavior."""
    max_attempts: int = 3
    backoff_base: float = 1.0       # seconds; delay = base * 2^attempt ± jitter
    backoff_max: float = 30.0       # cap on delay between retries
    jitter: float = 0.2             # ±20% randomization on backoff

    # What counts as retryable (by type or by a truthy ``retryable`` attribute)
    retryable_exceptions: tuple = (
        TimeoutError,
        ConnectionError,
    )


DEFAULT_POLICY = RetryPolicy()


def policy_from_config(config: dict[str, Any] | None) -> RetryPolicy:
    """
    Build a RetryPolicy from the ``retry`` section of the loaded config.

    Config format:
        retry:
          max_attempts: 3
          backoff_base: 1.0
          backoff_max: 30.0
          jitter: 0.2
    """
    retry_cfg = (config or {}).get("retry") or {}
    if not retry_cfg:
        return DEFAULT_POLICY
    return RetryPolicy(
        max_attempts=int(retry_cfg.get("max_attempts", DEFAULT_POLICY.max_attempts)),
        backoff_base=float(retry_cfg.get("backoff_base", DEFAULT_POLICY.backoff_base)),
        backoff_max=float(retry_cfg.get("backoff_max", DEFAULT_POLICY.backoff_max)),
        jitter=float(retry_cfg.get("jitter", DEFAULT_POLICY.jitter)),
    )


# ═══════════════════════════════════════════════════════════════════
# Retry Logic
# ═══════════════════════════════════════════════════════════════════

def _is_retryable(error: Exception, policy: RetryPolicy) -> bool:
    """Determine if an exception is retryable."""
    if isinstance(error, policy.retryable_exceptions):
        return True
    return bool(getattr(error, "retryable", False))


def _calculate_backoff(
    attempt: int,
    policy: RetryPolicy,
    rng: random.Random | None = None,
) -> float:
    """Calculate backoff delay with jitter. ``attempt`` is 0-indexed."""
    base_delay = policy.backoff_base * (2 ** attempt)
    capped = min(base_delay, policy.backoff_max)
    jitter_range = capped * policy.jitter
    uniform = rng.uniform if rng is not None else random.uniform
    return max(0.0, capped + uniform(-jitter_range, jitter_range))


def schedule_with_retry(
    scheduler: Any,
    delay: float,
    fn: Callable[[], None],
    policy: RetryPolicy | None = None,
    label: str = "",
    on_retry: Callable[[Exception, int, float], None] | None = None,
    on_exhausted: Callable[[Exception, int], None] | None = None,
    rng: random.Random | None = None,
) -> Any:
    """
    Schedule ``fn`` after ``delay`` and retry it with backoff on failure.

    Args:
        scheduler:    Anything exposing ``after(delay, fn, label)``
        delay:        Initial delay in seconds
        fn:           The continuation; raises to signal failure
        policy:       RetryPolicy (or default)
        label:        For logging
        on_retry:     Called with (error, attempt, backoff) before a retry
        on_exhausted: Called with (error, attempts) when the error is
                      non-retryable or attempts are used up. If omitted
                      the final error propagates out of the scheduler.
        rng:          Jitter source (injectable for deterministic tests)

    Returns:
        The handle of the first scheduled attempt
    """
    if policy is None:
        policy = DEFAULT_POLICY

    def _attempt(n: int) -> Callable[[], None]:
        def run():
            try:
                fn()
            except Exception as e:
                if _is_retryable(e, policy) and n < policy.max_attempts:
                    backoff = _calculate_backoff(n - 1, policy, rng)
                    logger.warning(
                        "Deferred work failed (attempt %d/%d, label=%s): %s — retrying in %.2fs",
                        n, policy.max_attempts, label, str(e)[:100], backoff,
                    )
                    if on_retry is not None:
                        on_retry(e, n, backoff)
                    scheduler.after(backoff, _attempt(n + 1), label)
                    return

                logger.error(
                    "Deferred work gave up (attempts=%d, label=%s): %s",
                    n, label, str(e)[:100],
                )
                if on_exhausted is None:
                    raise
                on_exhausted(e, n)
            else:
                if n > 1:
                    logger.info("Deferred work succeeded after %d attempts (label=%s)", n, label)
        return run

    return scheduler.after(delay, _attempt(1), label)
