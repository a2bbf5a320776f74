from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Optional

from .angles import wraparound_distance
from .errors import MoontrackError

if TYPE_CHECKING:
    from .rotor import RotorBackend

LOGGER = logging.getLogger("convergence")


class ConvergenceConstants:
    THRESHOLD_DEG = 2.0
    POLL_INTERVAL_S = 1.0
    SETTLE_S = 2.0


class SequenceAbortedError(MoontrackError):
    pass


def heading_converged(heading: Optional[float], target: float, threshold_deg: float) -> bool:
    if heading is None:
        return False
    return wraparound_distance(heading, target) <= threshold_deg


def wait_for_heading(
    rotor: "RotorBackend",
    target: float,
    *,
    threshold_deg: float = ConvergenceConstants.THRESHOLD_DEG,
    poll_interval_s: float = ConvergenceConstants.POLL_INTERVAL_S,
    settle_s: float = ConvergenceConstants.SETTLE_S,
    cancel: Optional[threading.Event] = None,
    timeout_s: Optional[float] = None,
    logger: Optional[logging.Logger] = None,
) -> float:
    """Block until `rotor` reports a heading within `threshold_deg` of `target`.

    The heading is read from the rotor's poller, never queried here. Once
    converged the rotor is stopped and allowed to settle. Raises
    SequenceAbortedError as soon as `cancel` is set, TimeoutError after
    `timeout_s`, and the rotor's own failure if its poller died.
    """
    log = logger or LOGGER
    cancel = cancel or threading.Event()
    start = time.monotonic()
    while True:
        rotor.raise_if_failed()
        heading = rotor.heading
        if heading_converged(heading, target, threshold_deg):
            break
        elapsed = time.monotonic() - start
        if timeout_s is not None and elapsed >= timeout_s:
            raise TimeoutError(f"{rotor.name} did not reach {target:.1f} within {timeout_s:.1f}s (at {heading})")
        if cancel.wait(poll_interval_s):
            raise SequenceAbortedError(f"wait for {rotor.name} -> {target:.1f} aborted")
    log.info("%s reached %.1f (target %.1f)", rotor.name, heading, target)
    rotor.stop()
    if cancel.wait(settle_s):
        raise SequenceAbortedError(f"settle of {rotor.name} aborted")
    return heading
