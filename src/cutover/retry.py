"""
Backoff calculation for re-queued sub-tasks.

A failed sub-task with retries left goes back to Pending and becomes
eligible to start again after an exponentially growing delay with jitter.
"""

import random

from cutover.models import OrchestratorConfig


def calculate_backoff(
    retry_count: int,
    config: OrchestratorConfig,
) -> float:
    """
    Calculate backoff delay with exponential growth and jitter.

    Args:
        retry_count: Retries already scheduled, including this one (1-based)
        config: Orchestrator configuration

    Returns:
        Delay in seconds (0 when backoff is disabled)

    Example:
        >>> config = OrchestratorConfig(retry_initial_delay=1.0, retry_jitter=0.0)
        >>> calculate_backoff(1, config)
        1.0
        >>> calculate_backoff(3, config)
        4.0
    """
    if config.retry_initial_delay == 0:
        return 0.0

    # Exponential backoff: initial * base^(retry-1)
    delay = config.retry_initial_delay * (config.retry_exponential_base ** max(0, retry_count - 1))

    # Cap at max delay
    delay = min(delay, config.retry_max_delay)

    # Add jitter (random variation so re-queued sub-tasks don't restart in lockstep)
    jitter_range = delay * config.retry_jitter
    delay += random.uniform(-jitter_range, jitter_range)  # nosec B311 - not crypto

    return max(0.0, delay)


__all__ = ["calculate_backoff"]
