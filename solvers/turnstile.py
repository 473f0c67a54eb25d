"""Puzzle-widget (Cloudflare Turnstile) flow.

One step per tick: read the widget frame's metrics, let the
:class:`StabilizationStateMachine` decide whether it is actionable,
then locate the checkbox control across the frame's document, shadow
roots and nested frames.  When nothing can be located the driver fires
a blind click at heuristic coordinates instead.
"""

import logging
from typing import Any, List, Optional

from browser import scripts
from browser.locator import PlaywrightNode
from solvers.base import ChallengeFlow
from solvers.recaptcha import FRAME_PATTERNS as RECAPTCHA_FRAME_PATTERNS
from solvers.stabilization import (
    CONTENT_INDICATOR_SELECTORS,
    WidgetMetrics,
    WidgetStatus,
)

logger = logging.getLogger(__name__)

FRAME_URL_PATTERNS = (
    "challenges.cloudflare.com",
    "turnstile",
    "cloudflare.com/cdn-cgi/challenge-platform",
)

CONTAINER_SELECTORS = (
    ".cf-turnstile",
    '[class*="cf-turnstile"]',
    'iframe[id^="cf-chl-widget-"]',
    "[data-sitekey]",
)

# Priority order: most specific first
TARGET_SELECTORS = (
    '.cb-lb input[type="checkbox"]',
    'input[type="checkbox"]',
    ".cb-lb-t",
    ".ctp-checkbox-label",
    "label.ctp-checkbox-label",
    ".ctp-checkbox-container",
    '[role="checkbox"]',
    ".cb-container",
    "#challenge-stage",
    ".mark",
    'label[for*="cf-"]',
)

SUCCESS_SELECTORS = ('[aria-checked="true"]', ".cf-turnstile-success")


async def read_metrics(frame: Any) -> Optional[WidgetMetrics]:
    """Evaluate widget geometry/text/content signals inside *frame*."""
    try:
        data = await frame.evaluate(scripts.WIDGET_METRICS, list(CONTENT_INDICATOR_SELECTORS))
    except Exception as e:
        logger.debug("Metrics unavailable for %s: %s", getattr(frame, "url", "?"), e)
        return None
    return WidgetMetrics.from_dict(data)


class TurnstileFlow(ChallengeFlow):
    """Stabilize -> locate -> interact -> re-check."""

    kind = "turnstile"

    def widget_frames(self, page: Any) -> List[Any]:
        return [
            frame for frame in self.frames_matching(page, FRAME_URL_PATTERNS)
            if frame is not page.main_frame
        ]

    async def detect(self, page: Any) -> bool:
        # Pages embedding both are handled by the reCAPTCHA flow
        if self.frames_matching(page, RECAPTCHA_FRAME_PATTERNS):
            return False
        if self.widget_frames(page):
            return True
        return await self.has_any(page.main_frame, CONTAINER_SELECTORS)

    async def is_solved(self, page: Any) -> bool:
        try:
            if await page.main_frame.evaluate(scripts.TURNSTILE_TOKEN):
                return True
        except Exception as e:
            logger.debug("Token probe failed: %s", e)

        for selector in SUCCESS_SELECTORS:
            if await self.visible_element(page.main_frame, selector):
                return True

        for frame in self.widget_frames(page):
            try:
                if await frame.evaluate(scripts.FRAME_SUCCESS):
                    return True
            except Exception as e:
                logger.debug("Frame success probe failed: %s", e)
        return False

    async def attempt(self, page: Any, state: Any) -> WidgetStatus:
        if await self.is_solved(page):
            return WidgetStatus.SOLVED

        frames = self.widget_frames(page)
        if not frames:
            # Widget rendered inline (no frame yet): search the page itself
            if await self.click(page.main_frame, TARGET_SELECTORS):
                return WidgetStatus.SOLVING
            return WidgetStatus.WAITING

        for frame in frames:
            metrics = await read_metrics(frame)
            if metrics is None:
                continue
            if not metrics.is_loaded:
                logger.debug("[%s] Frame not loaded (%s)", self.kind, metrics.ready_state)
                continue

            status = state.stabilizer.classify(metrics)
            if status is not WidgetStatus.READY:
                return status

            logger.debug(
                "[%s] Widget ready at %sx%s", self.kind, metrics.width, metrics.height,
            )
            await self.driver.pause("think")
            root = await PlaywrightNode.for_frame(frame)
            target = await self.locator.find(root, TARGET_SELECTORS)
            if target is not None:
                logger.info("[%s] Interacting with %s", self.kind, target.description)
                await self.driver.interact(target)
            else:
                logger.info("[%s] No control located; blind click", self.kind)
                await self.driver.blind_interact(frame, metrics.width, metrics.height)
            await self.driver.pause("settle")
            if await self.is_solved(page):
                return WidgetStatus.SOLVED
            return WidgetStatus.SOLVING

        return WidgetStatus.WAITING
