"""Poll-driven challenge orchestration.

The host page's DOM mutations are not reliably observable, so the
engine polls on a fixed interval.  Each tick:

1. Skips when an action is in flight or the debounce window since the
   last action has not elapsed.
2. Detects the challenge type, reCAPTCHA first (a page embedding both
   is a reCAPTCHA page).
3. Advances the matching flow by one step and records the outcome in
   that widget's :class:`SolveState`.

Every exception raised by a flow is caught here, logged with its
:class:`ErrorType`, and consumes one attempt; nothing propagates to the
poll loop.  Attempt-budget exhaustion is the only terminal outcome and
it only stops the engine from acting; the widget is left untouched.

All per-page state lives in an explicit :class:`PageState` passed into
:meth:`ChallengeOrchestrator.tick`.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from core.bridge import CrossContextBridge
from core.errors import BridgeTimeout, classify_error
from core.notifier import DEFAULT_TITLE, SUCCESS_MESSAGE
from solvers.base import ChallengeFlow
from solvers.stabilization import StabilizationStateMachine, WidgetStatus

logger = logging.getLogger(__name__)


@dataclass
class SolveState:
    """Mutable record for one widget instance.

    Attributes:
        kind: Flow that owns the widget (``recaptcha``/``turnstile``).
        max_attempts: Budget for this widget; never exceeded.
        stabilizer: Readiness classifier holding the stabilization counter.
    """

    kind: str
    max_attempts: int
    stabilizer: StabilizationStateMachine
    status: WidgetStatus = WidgetStatus.IDLE
    attempts: int = 0
    last_action_ts: float = 0.0
    notified: bool = False
    fatal_logged: bool = False
    exhausted_logged: bool = False
    last_error: Optional[str] = None

    @property
    def stabilization_attempts(self) -> int:
        return self.stabilizer.stabilization_attempts

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def reset(self) -> None:
        """Forget attempts after the host reset a solved widget."""
        self.attempts = 0
        self.status = WidgetStatus.IDLE
        self.notified = False
        self.fatal_logged = False
        self.exhausted_logged = False
        self.last_error = None
        self.stabilizer.reset()


@dataclass
class PageState:
    """Per-page state threaded through :meth:`ChallengeOrchestrator.tick`."""

    is_solving: bool = False
    last_action_ts: float = 0.0
    ticks: int = 0
    widgets: Dict[str, SolveState] = field(default_factory=dict)

    @property
    def solved(self) -> bool:
        return any(w.status is WidgetStatus.SOLVED for w in self.widgets.values())

    def summary(self) -> List[Dict[str, Any]]:
        return [
            {
                "kind": w.kind,
                "status": w.status.value,
                "attempts": w.attempts,
                "max_attempts": w.max_attempts,
                "stabilization_attempts": w.stabilization_attempts,
                "notified": w.notified,
                "last_error": w.last_error,
            }
            for w in self.widgets.values()
        ]


class ChallengeOrchestrator:
    """Detect, dispatch and track challenge flows for one page.

    Args:
        flows: Flows in priority order; the first one that detects wins.
        bridge: Channel used for success notifications.
        poll_interval: Seconds between ticks.
        debounce: Minimum seconds between two actions on the page.
        clock: Time source, injectable for tests.
    """

    def __init__(
        self,
        flows: Sequence[ChallengeFlow],
        bridge: Optional[CrossContextBridge] = None,
        poll_interval: float = 1.0,
        debounce: float = 2.0,
        notification_title: str = DEFAULT_TITLE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.flows = list(flows)
        self.bridge = bridge
        self.poll_interval = poll_interval
        self.debounce = debounce
        self.notification_title = notification_title
        self._clock = clock
        self._stop_event = asyncio.Event()

    async def detect(self, page: Any) -> Optional[ChallengeFlow]:
        """Return the highest-priority flow whose widget is on *page*."""
        for flow in self.flows:
            try:
                if await flow.detect(page):
                    return flow
            except Exception as e:
                logger.debug("[%s] Detection failed: %s", flow.kind, e)
        return None

    async def tick(self, page: Any, state: PageState) -> PageState:
        """Advance the page by at most one action."""
        state.ticks += 1
        if state.is_solving:
            return state
        now = self._clock()
        if state.last_action_ts and now - state.last_action_ts < self.debounce:
            return state

        flow = await self.detect(page)
        if flow is None:
            if state.widgets:
                logger.debug("Widgets gone; dropping state for %s", list(state.widgets))
                state.widgets.clear()
            return state

        widget = state.widgets.get(flow.kind)
        if widget is None:
            logger.info("[%s] Challenge detected", flow.kind)
            widget = SolveState(
                kind=flow.kind,
                max_attempts=flow.max_attempts,
                stabilizer=flow.new_stabilizer(),
            )
            state.widgets[flow.kind] = widget

        if widget.status is WidgetStatus.SOLVED:
            await self._check_still_solved(flow, page, widget)
            return state

        if widget.exhausted:
            # The last action may only show its success marker on a later tick
            if await self._is_solved(flow, page):
                await self._record(flow, widget, state, WidgetStatus.SOLVED)
                return state
            if not widget.exhausted_logged:
                logger.error(
                    "[%s] Could not solve after %d attempts", flow.kind, widget.attempts,
                )
                widget.exhausted_logged = True
            return state

        state.is_solving = True
        try:
            status = await flow.attempt(page, widget)
        except Exception as e:
            error_type = classify_error(e)
            logger.warning("[%s] Attempt failed [%s]: %s", flow.kind, error_type.value, e)
            widget.last_error = str(e)
            widget.attempts += 1
            widget.last_action_ts = state.last_action_ts = self._clock()
            return state
        finally:
            state.is_solving = False

        await self._record(flow, widget, state, status)
        return state

    async def _record(
        self, flow: ChallengeFlow, widget: SolveState, state: PageState, status: WidgetStatus,
    ) -> None:
        if status is WidgetStatus.FATAL:
            if not widget.fatal_logged:
                logger.error("[%s] Widget reported a fatal state; not acting", flow.kind)
                widget.fatal_logged = True
            widget.status = status
            return
        widget.fatal_logged = False

        if status is WidgetStatus.WAITING:
            widget.status = status
            return

        if status is WidgetStatus.SOLVING:
            widget.attempts += 1
            widget.status = status
            widget.last_action_ts = state.last_action_ts = self._clock()
            logger.info(
                "[%s] Attempt %d/%d", flow.kind, widget.attempts, widget.max_attempts,
            )
            return

        if status is WidgetStatus.SOLVED:
            widget.status = status
            logger.info("[%s] Solved after %d attempts", flow.kind, widget.attempts)
            await self._notify_success(widget)

    async def _is_solved(self, flow: ChallengeFlow, page: Any) -> Optional[bool]:
        try:
            return await flow.is_solved(page)
        except Exception as e:
            logger.debug("[%s] Solved check failed: %s", flow.kind, e)
            return None

    async def _check_still_solved(self, flow: ChallengeFlow, page: Any, widget: SolveState) -> None:
        if await self._is_solved(flow, page) is False:
            logger.info("[%s] Success marker gone; widget was reset", flow.kind)
            widget.reset()

    async def _notify_success(self, widget: SolveState) -> None:
        if widget.notified:
            return
        widget.notified = True
        if self.bridge is None:
            return
        try:
            await self.bridge.request(
                "notify", title=self.notification_title, message=SUCCESS_MESSAGE,
            )
        except BridgeTimeout as e:
            logger.warning("Success notification not delivered: %s", e)

    async def run(self, page: Any, state: Optional[PageState] = None) -> PageState:
        """Poll *page* until :meth:`stop` is called or the task is cancelled."""
        state = state or PageState()
        self._stop_event.clear()
        logger.info("Challenge polling started (every %.1fs)", self.poll_interval)
        try:
            while not self._stop_event.is_set():
                if page.is_closed():
                    logger.info("Page closed; stopping")
                    break
                await self.tick(page, state)
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
                    break
                except asyncio.TimeoutError:
                    pass
        finally:
            logger.info("Challenge polling stopped after %d ticks", state.ticks)
        return state

    def stop(self) -> None:
        self._stop_event.set()
