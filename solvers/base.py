"""Shared plumbing for challenge flows.

A flow knows how to detect one widget type on a page, whether it is
solved, and how to advance it by one step.  ``attempt`` is called at
most once per poll tick and returns the status the orchestrator
records:

* ``SOLVED`` -- the success marker is present.
* ``SOLVING`` -- an action was taken (consumes one attempt).
* ``WAITING`` -- nothing actionable yet (no attempt consumed).
* ``FATAL`` -- host reported failure; stop acting on this widget.
"""

import logging
from typing import Any, List, Optional, Sequence

from browser.interaction import InteractionDriver
from browser.locator import PlaywrightNode, TargetLocator
from solvers.stabilization import StabilizationStateMachine, WidgetStatus

logger = logging.getLogger(__name__)


class ChallengeFlow:
    """Base class for per-widget-type solve flows.

    Attributes:
        kind: Widget type name used in logs and state keys.
        locator: Selector search across documents, shadow roots, frames.
        driver: Synthetic input driver.
        max_attempts: Attempt budget per widget instance.
    """

    kind = "generic"

    def __init__(
        self,
        locator: Optional[TargetLocator] = None,
        driver: Optional[InteractionDriver] = None,
        max_attempts: int = 30,
        max_stabilization_attempts: int = 20,
    ) -> None:
        self.locator = locator or TargetLocator()
        self.driver = driver or InteractionDriver()
        self.max_attempts = max_attempts
        self.max_stabilization_attempts = max_stabilization_attempts

    def new_stabilizer(self) -> StabilizationStateMachine:
        return StabilizationStateMachine(self.max_stabilization_attempts)

    async def detect(self, page: Any) -> bool:
        raise NotImplementedError

    async def is_solved(self, page: Any) -> bool:
        raise NotImplementedError

    async def attempt(self, page: Any, state: Any) -> WidgetStatus:
        raise NotImplementedError

    @staticmethod
    def frames_matching(page: Any, patterns: Sequence[str]) -> List[Any]:
        """Attached frames whose URL contains any of *patterns*."""
        frames = []
        for frame in page.frames:
            try:
                if frame.is_detached():
                    continue
                url = frame.url or ""
            except Exception:
                continue
            if any(pattern in url for pattern in patterns):
                frames.append(frame)
        return frames

    @staticmethod
    async def has_any(frame: Any, selectors: Sequence[str]) -> bool:
        """Whether any selector matches in *frame* (errors count as no)."""
        for selector in selectors:
            try:
                if await frame.query_selector(selector):
                    return True
            except Exception as e:
                logger.debug("Selector %s failed: %s", selector, e)
        return False

    @staticmethod
    async def visible_element(frame: Any, selector: str) -> Optional[Any]:
        try:
            element = await frame.query_selector(selector)
            if element and await element.is_visible():
                return element
        except Exception as e:
            logger.debug("Visibility probe %s failed: %s", selector, e)
        return None

    async def click(
        self, frame: Any, selectors: Sequence[str], verify_checked: bool = True,
    ) -> bool:
        """Locate a control in *frame* and interact with it.

        Returns:
            ``False`` when nothing matched; the caller decides whether a
            blind click is appropriate.
        """
        root = await PlaywrightNode.for_frame(frame)
        target = await self.locator.find(root, selectors)
        if target is None:
            logger.debug("[%s] No target for %s", self.kind, list(selectors))
            return False
        logger.info("[%s] Interacting with %s", self.kind, target.description)
        return await self.driver.interact(target, verify_checked=verify_checked)
