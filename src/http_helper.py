"""HTTP validation with fixed-interval retries.

Freshly provisioned endpoints (load balancers, app servers) take a while to
start answering correctly. validate() polls a probe until a predicate
accepts the outcome or the attempt budget runs out:

    outcome = http_get_with_retry(url, 404, '404: page not found',
                                  max_attempts=10, interval=10)
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import requests

from common import ValidationTimeout

logger = logging.getLogger(__name__)

# Transport-level failures expected while infrastructure warms up
TRANSPORT_ERRORS = (requests.exceptions.RequestException, OSError)


@dataclass(frozen=True)
class ProbeOutcome:
    """Status code and body captured from one HTTP attempt."""
    status: int
    body: str

    def __str__(self):
        snippet = self.body if len(self.body) <= 100 else self.body[:100] + '...'
        return f"HTTP {self.status}: {snippet!r}"


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget with a constant delay between attempts.

    No jitter and no growth: warm-up time of new infrastructure is roughly
    constant, there is no congestion to back off from.
    """
    max_attempts: int
    interval: float

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.interval < 0:
            raise ValueError(f"interval must not be negative, got {self.interval}")


def validate(
    target: Any,
    probe: Callable[[Any], ProbeOutcome],
    predicate: Callable[[ProbeOutcome], bool],
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
) -> ProbeOutcome:
    """Probe target until predicate accepts an outcome.

    Attempts run strictly one after another. A probe raising a transport
    error counts as a non-matching attempt and retrying continues.

    Args:
        target: Passed to probe unchanged (e.g. a URL)
        probe: Performs one synchronous attempt
        predicate: Decides whether an outcome is acceptable
        policy: Attempt budget and delay
        sleep: Blocking delay function

    Returns:
        The first accepted ProbeOutcome

    Raises:
        ValidationTimeout: budget exhausted; carries the last outcome or error
    """
    last_outcome: Optional[ProbeOutcome] = None
    last_error: Optional[BaseException] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            outcome = probe(target)
        except TRANSPORT_ERRORS as e:
            logger.debug(f"Attempt {attempt}/{policy.max_attempts} on {target} failed: {e}")
            last_outcome, last_error = None, e
        else:
            last_outcome, last_error = outcome, None
            if predicate(outcome):
                logger.info(f"{target} valid after {attempt} attempt(s): {outcome}")
                return outcome
            logger.debug(f"Attempt {attempt}/{policy.max_attempts} on {target} not valid yet: {outcome}")

        if attempt < policy.max_attempts:
            sleep(policy.interval)

    logger.error(f"{target} not valid after {policy.max_attempts} attempt(s)")
    raise ValidationTimeout(target, policy.max_attempts, last_outcome, last_error)


def http_get(url: str, timeout: float = 10.0, verify: bool = True) -> ProbeOutcome:
    """Issue one GET and capture status and body, whatever the status."""
    resp = requests.get(url, timeout=timeout, verify=verify)
    return ProbeOutcome(status=resp.status_code, body=resp.text)


def _http_probe(timeout: float, verify: bool) -> Callable[[str], ProbeOutcome]:
    def probe(url: str) -> ProbeOutcome:
        return http_get(url, timeout=timeout, verify=verify)
    return probe


def http_get_with_retry(
    url: str,
    expected_status: int,
    expected_body: str,
    max_attempts: int,
    interval: float,
    timeout: float = 10.0,
    verify: bool = True,
    sleep: Callable[[float], None] = time.sleep,
) -> ProbeOutcome:
    """Retry GET until status matches and body contains expected_body."""
    def predicate(outcome: ProbeOutcome) -> bool:
        return outcome.status == expected_status and expected_body in outcome.body

    return validate(url, _http_probe(timeout, verify), predicate,
                    RetryPolicy(max_attempts, interval), sleep=sleep)


def http_get_with_retry_custom_validation(
    url: str,
    max_attempts: int,
    interval: float,
    validate_fn: Callable[[int, str], bool],
    timeout: float = 10.0,
    verify: bool = True,
    sleep: Callable[[float], None] = time.sleep,
) -> ProbeOutcome:
    """Retry GET until validate_fn(status, body) returns True."""
    def predicate(outcome: ProbeOutcome) -> bool:
        return validate_fn(outcome.status, outcome.body)

    return validate(url, _http_probe(timeout, verify), predicate,
                    RetryPolicy(max_attempts, interval), sleep=sleep)
