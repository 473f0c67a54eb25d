"""Per-widget readiness classification.

A puzzle widget renders inside its own frame and may spend a long time
at 0x0 while its scripts load, or stay invisible on purpose.  The
:class:`StabilizationStateMachine` turns the raw geometry/URL/text
signals of that frame into one of three verdicts:

* ``WAITING`` -- still rendering, poll again later.
* ``READY`` -- actionable (either fully rendered, carrying content
  despite being tiny, or assumed invisible after a bounded wait).
* ``FATAL`` -- the host reported an explicit failure; stop acting.

The orchestrator layers ``SOLVING`` / ``IDLE`` / ``SOLVED`` on top of
``READY``.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

STANDARD_MIN_WIDTH = 150  # exclusive
STANDARD_MIN_HEIGHT = 50  # inclusive
TINY_LIMIT = 50
DEFAULT_MAX_STABILIZATION_ATTEMPTS = 20

FAILURE_URL_MARKERS = ("/failure", "/error", "error=")
RETRY_URL_MARKER = "failure_retry"
ERROR_TEXT_PATTERN = re.compile(r"Error|400 Bad Request|400070", re.IGNORECASE)

# Evaluated in the widget frame; any match means content exists even
# when the frame reports tiny geometry.
CONTENT_INDICATOR_SELECTORS = (
    ".ctp-checkbox-container",
    'input[type="checkbox"]',
    ".cb-lb",
    "#challenge-stage",
)


class WidgetStatus(Enum):
    """Lifecycle status of a challenge widget."""

    WAITING = "WAITING"
    READY = "READY"
    FATAL = "FATAL"
    SOLVING = "SOLVING"
    IDLE = "IDLE"
    SOLVED = "SOLVED"


@dataclass
class WidgetMetrics:
    """Signals read from a widget's own rendering context.

    Attributes:
        width: ``window.innerWidth`` of the widget frame.
        height: ``window.innerHeight`` of the widget frame.
        url: ``location.href`` of the widget frame.
        body_text: Visible ``document.body.innerText``.
        has_content: Whether any content-indicator selector matched.
        ready_state: ``document.readyState`` of the frame.
    """

    width: float
    height: float
    url: str = ""
    body_text: str = ""
    has_content: bool = False
    ready_state: str = "complete"

    @property
    def is_standard(self) -> bool:
        """Fully rendered: width > 150 and height >= 50."""
        return (
            self.width > STANDARD_MIN_WIDTH
            and self.height >= STANDARD_MIN_HEIGHT
        )

    @property
    def is_tiny(self) -> bool:
        return self.width < TINY_LIMIT or self.height < TINY_LIMIT

    @property
    def is_loaded(self) -> bool:
        return self.ready_state in ("complete", "interactive")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "WidgetMetrics":
        """Build metrics from the dict returned by the metrics script."""
        data = data or {}
        return cls(
            width=float(data.get("width") or 0),
            height=float(data.get("height") or 0),
            url=str(data.get("url") or ""),
            body_text=str(data.get("bodyText") or ""),
            has_content=bool(data.get("hasContent")),
            ready_state=str(data.get("readyState") or "complete"),
        )


def signals_failure_url(url: str) -> bool:
    """Whether *url* is an explicit failure path (and not a retry)."""
    if RETRY_URL_MARKER in url:
        return False
    return any(marker in url for marker in FAILURE_URL_MARKERS)


def signals_error_text(text: str) -> bool:
    return bool(ERROR_TEXT_PATTERN.search(text or ""))


class StabilizationStateMachine:
    """Classify one widget instance as WAITING, READY or FATAL.

    The machine owns a bounded stabilization counter.  Tiny widgets
    with no content increment it; once it reaches the maximum the
    widget is treated as intentionally invisible (``READY``) so the
    interaction layer can attempt a blind click instead of stalling.

    A standard-sized widget is never classified ``FATAL`` even when
    it shows error text: a fully rendered widget displaying transient
    text is still actionable.
    """

    def __init__(
        self,
        max_stabilization_attempts: int = DEFAULT_MAX_STABILIZATION_ATTEMPTS,
    ) -> None:
        self.max_stabilization_attempts = max_stabilization_attempts
        self.stabilization_attempts = 0

    def classify(self, metrics: WidgetMetrics) -> WidgetStatus:
        """Return the readiness verdict for the current poll.

        Args:
            metrics: Signals read from the widget frame on this poll.

        Returns:
            ``WidgetStatus.WAITING``, ``READY`` or ``FATAL``.
        """
        if not metrics.is_standard:
            if signals_failure_url(metrics.url):
                return WidgetStatus.FATAL
            if signals_error_text(metrics.body_text):
                return WidgetStatus.FATAL

        if metrics.is_tiny:
            if metrics.has_content:
                self.stabilization_attempts = 0
                return WidgetStatus.READY
            if self.stabilization_attempts < self.max_stabilization_attempts:
                self.stabilization_attempts += 1
                return WidgetStatus.WAITING
            logger.debug(
                "Widget still %sx%s after %d polls; assuming invisible",
                metrics.width, metrics.height,
                self.stabilization_attempts,
            )
            return WidgetStatus.READY

        # Mid-size frames (not tiny, not standard) are actionable too
        self.stabilization_attempts = 0
        return WidgetStatus.READY

    def reset(self) -> None:
        self.stabilization_attempts = 0
