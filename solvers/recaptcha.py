"""Checkbox/audio (reCAPTCHA v2) flow.

Each tick advances the widget by at most one step:

1. Anchor frame: click the checkbox if it is not checked yet.
2. Challenge frame visible: if an error message is shown the audio
   challenge is blocked, so request a fresh one via the reload button.
3. Switch to the audio challenge.
4. Send the audio URL over the bridge for transcription, type the
   answer key by key and press verify.  A failed transcription (or a
   bridge timeout) reloads the challenge.

The anchor checkbox carrying ``recaptcha-checkbox-checked`` is the
success marker.
"""

import logging
from typing import Any, Optional

from core.bridge import CrossContextBridge
from core.errors import BridgeTimeout, DetectionMiss, TranscriptionError
from solvers.base import ChallengeFlow
from solvers.stabilization import WidgetStatus

logger = logging.getLogger(__name__)

ANCHOR_PATTERN = "api2/anchor"
CHALLENGE_PATTERN = "api2/bframe"
FRAME_PATTERNS = (ANCHOR_PATTERN, CHALLENGE_PATTERN)

PAGE_INDICATORS = (
    ".g-recaptcha",
    'iframe[src*="recaptcha/api2"]',
    'iframe[title*="reCAPTCHA"]',
)

CHECKBOX_SELECTORS = (".recaptcha-checkbox-border", "#recaptcha-anchor")
CHECKED_SELECTOR = ".recaptcha-checkbox-checked"
AUDIO_BUTTON_SELECTORS = ("#recaptcha-audio-button",)
AUDIO_SOURCE_SELECTOR = "#audio-source"
AUDIO_BLOCK_SELECTOR = ".rc-audiochallenge-block"
RESPONSE_INPUT_SELECTOR = "#audio-response"
VERIFY_BUTTON_SELECTORS = ("#recaptcha-verify-button",)
RELOAD_BUTTON_SELECTORS = ("#recaptcha-reload-button",)
ERROR_MESSAGE_SELECTOR = ".rc-audiochallenge-error-message"
TOKEN_SELECTOR = 'textarea[name="g-recaptcha-response"]'


class RecaptchaFlow(ChallengeFlow):
    """Checkbox -> audio switch -> transcribe and type -> verify.

    Args:
        bridge: Channel to the background service doing the transcription.
        bridge_timeout: Per-request bound; the bridge default when ``None``.
    """

    kind = "recaptcha"

    def __init__(
        self,
        bridge: CrossContextBridge,
        bridge_timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("max_attempts", 5)
        super().__init__(**kwargs)
        self.bridge = bridge
        self.bridge_timeout = bridge_timeout

    def anchor_frame(self, page: Any) -> Optional[Any]:
        frames = self.frames_matching(page, (ANCHOR_PATTERN,))
        return frames[0] if frames else None

    async def challenge_frame(self, page: Any) -> Optional[Any]:
        """The challenge frame, only while it is actually displayed."""
        for frame in self.frames_matching(page, (CHALLENGE_PATTERN,)):
            try:
                element = await frame.frame_element()
                if await element.is_visible():
                    return frame
            except Exception as e:
                logger.debug("Challenge frame probe failed: %s", e)
        return None

    async def detect(self, page: Any) -> bool:
        if self.frames_matching(page, FRAME_PATTERNS):
            return True
        return await self.has_any(page.main_frame, PAGE_INDICATORS)

    async def is_solved(self, page: Any) -> bool:
        anchor = self.anchor_frame(page)
        if anchor is not None and await self.has_any(anchor, (CHECKED_SELECTOR,)):
            return True
        try:
            token = await page.main_frame.evaluate(
                "(sel) => { const el = document.querySelector(sel);"
                " return el ? el.value : null; }",
                TOKEN_SELECTOR,
            )
            return bool(token) and len(token) > 10
        except Exception as e:
            logger.debug("Token probe failed: %s", e)
            return False

    async def attempt(self, page: Any, state: Any) -> WidgetStatus:
        if await self.is_solved(page):
            return WidgetStatus.SOLVED

        challenge = await self.challenge_frame(page)
        if challenge is None:
            return await self._click_checkbox(page)

        error = await self.visible_element(challenge, ERROR_MESSAGE_SELECTOR)
        if error is not None and (await error.inner_text()).strip():
            logger.warning("[%s] Audio challenge blocked; reloading", self.kind)
            await self.click(challenge, RELOAD_BUTTON_SELECTORS)
            return WidgetStatus.SOLVING

        source = await challenge.query_selector(AUDIO_SOURCE_SELECTOR)
        if source is None:
            if await self.has_any(challenge, (AUDIO_BLOCK_SELECTOR,)):
                return WidgetStatus.WAITING
            logger.info("[%s] Switching to audio challenge", self.kind)
            await self.driver.pause("think")
            if not await self.click(challenge, AUDIO_BUTTON_SELECTORS):
                raise DetectionMiss("Audio button not found")
            return WidgetStatus.SOLVING

        return await self._solve_audio(page, challenge, source)

    async def _click_checkbox(self, page: Any) -> WidgetStatus:
        anchor = self.anchor_frame(page)
        if anchor is None:
            raise DetectionMiss("reCAPTCHA anchor frame not found")
        await self.driver.pause("think")
        # The checkbox opens the challenge rather than toggling
        if not await self.click(anchor, CHECKBOX_SELECTORS, verify_checked=False):
            raise DetectionMiss("reCAPTCHA checkbox not found")
        await self.driver.pause("settle")
        if await self.challenge_frame(page) is None and await self.is_solved(page):
            return WidgetStatus.SOLVED
        return WidgetStatus.SOLVING

    async def _solve_audio(self, page: Any, challenge: Any, source: Any) -> WidgetStatus:
        response_input = await challenge.query_selector(RESPONSE_INPUT_SELECTOR)
        if response_input is None:
            raise DetectionMiss("Audio response input not found")
        if await response_input.input_value():
            # Answer already typed; wait for the verify round-trip
            return WidgetStatus.WAITING

        audio_url = await source.get_attribute("src")
        if not audio_url:
            return WidgetStatus.WAITING

        logger.info("[%s] Requesting transcription", self.kind)
        try:
            response = await self.bridge.request(
                "transcribe", timeout=self.bridge_timeout, audioUrl=audio_url,
            )
        except BridgeTimeout:
            await self.click(challenge, RELOAD_BUTTON_SELECTORS)
            raise

        if not response.success or not response.text:
            await self.click(challenge, RELOAD_BUTTON_SELECTORS)
            raise TranscriptionError(response.error or "Empty transcription")

        logger.info(
            "[%s] Transcribed %r (%s)",
            self.kind, response.text, (response.metadata or {}).get("source", "api"),
        )
        await self.driver.type_text(response_input, response.text)
        await self.driver.pause("think")
        await self.click(challenge, VERIFY_BUTTON_SELECTORS)
        await self.driver.pause("settle")
        if await self.is_solved(page):
            return WidgetStatus.SOLVED
        return WidgetStatus.SOLVING
