"""Synthetic pointer and keyboard interaction.

Interactions are described declaratively as a list of
:class:`EventStep` records (event type, coordinates, delay range) and
executed by an :class:`InputBackend`.  Two backends interpret the same
sequences:

* :class:`DomEventBackend` -- dispatches DOM events inside the
  element's own frame (default).
* :class:`MouseBackend` -- drives Playwright's ``page.mouse`` and
  ``page.keyboard``, i.e. browser-level input.

:class:`InteractionDriver` layers the fallbacks on top: for checkbox
controls whose checked state did not flip after the pointer sequence it
escalates to a native ``click()``, then the nearest ``<label>``, then the
nearest generic container.  When no element was located at all,
:meth:`InteractionDriver.blind_interact` fires the sequence at heuristic
coordinates and never raises.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from browser import scripts
from browser.locator import InteractionTarget
from browser.stealth_hub import HumanProfile

logger = logging.getLogger(__name__)

CLICK_SEQUENCE: Tuple[Tuple[str, str], ...] = (
    ("pointerover", "pointer"),
    ("mouseover", "mouse"),
    ("pointerdown", "pointer"),
    ("mousedown", "mouse"),
    ("focus", "focus"),
    ("pointerup", "pointer"),
    ("mouseup", "mouse"),
    ("click", "mouse"),
)

FALLBACK_STRATEGIES = ("native", "label", "container")

DEFAULT_JITTER_PX = 3.0
# Conventional checkbox position inside a standard 300x65 widget
CHECKBOX_OFFSET = (30.0, 32.0)


@dataclass(frozen=True)
class EventStep:
    """One synthetic event in a sequence.

    Attributes:
        type: DOM event type (``pointerdown``, ``keyup``...).
        kind: Dispatcher family: pointer, mouse, focus, key, input,
            change.
        x: Client x coordinate in the target's frame.
        y: Client y coordinate in the target's frame.
        delay: ``(min, max)`` seconds to wait after the event.
        key: Character for key/input steps.
    """

    type: str
    kind: str
    x: float = 0.0
    y: float = 0.0
    delay: Tuple[float, float] = (0.0, 0.0)
    key: Optional[str] = None

    def to_js(self) -> Dict[str, Any]:
        return {"type": self.type, "kind": self.kind, "x": self.x, "y": self.y, "key": self.key}

    def sample_delay(self) -> float:
        low, high = self.delay
        return random.uniform(low, high) if high > 0 else 0.0


def jitter_point(
    x: float, y: float, jitter: float = DEFAULT_JITTER_PX,
) -> Tuple[float, float]:
    """Offset a point by a small uniform random amount."""
    return (x + random.uniform(-jitter, jitter), y + random.uniform(-jitter, jitter))


def build_click_sequence(
    x: float,
    y: float,
    delay: Tuple[float, float] = (0.02, 0.08),
) -> List[EventStep]:
    """Pointer/mouse sequence ending in ``click`` at ``(x, y)``."""
    return [
        EventStep(type=event_type, kind=kind, x=x, y=y, delay=delay)
        for event_type, kind in CLICK_SEQUENCE
    ]


def build_typing_sequence(
    text: str,
    delay: Tuple[float, float] = (0.03, 0.07),
) -> List[EventStep]:
    """Per-character ``keydown, keypress, input, keyup`` then ``change``."""
    steps: List[EventStep] = []
    for char in text:
        steps.append(EventStep(type="keydown", kind="key", key=char))
        steps.append(EventStep(type="keypress", kind="key", key=char))
        steps.append(EventStep(type="input", kind="input", key=char))
        steps.append(EventStep(type="keyup", kind="key", key=char, delay=delay))
    steps.append(EventStep(type="change", kind="change"))
    return steps


class InputBackend(Protocol):
    """Executes :class:`EventStep` sequences."""

    async def target_point(self, element: Any) -> Optional[Tuple[float, float]]:
        ...

    async def execute(self, element: Any, steps: Sequence[EventStep]) -> None:
        ...

    async def execute_at(self, frame: Any, steps: Sequence[EventStep]) -> None:
        ...


class DomEventBackend:
    """Dispatch events as DOM events inside the element's frame."""

    async def target_point(self, element: Any) -> Optional[Tuple[float, float]]:
        box = await element.evaluate(scripts.PREPARE_TARGET)
        if not box:
            return None
        return (float(box["x"]), float(box["y"]))

    async def execute(self, element: Any, steps: Sequence[EventStep]) -> None:
        for step in steps:
            await element.evaluate(scripts.DISPATCH_EVENT, step.to_js())
            wait = step.sample_delay()
            if wait:
                await asyncio.sleep(wait)

    async def execute_at(self, frame: Any, steps: Sequence[EventStep]) -> None:
        for step in steps:
            await frame.evaluate(scripts.DISPATCH_AT_POINT, step.to_js())
            wait = step.sample_delay()
            if wait:
                await asyncio.sleep(wait)


class MouseBackend:
    """Drive browser-level input through ``page.mouse``/``page.keyboard``.

    Only the steps that have a browser-level equivalent are replayed:
    ``pointerover`` moves, ``mousedown``/``mouseup`` press and release,
    ``keydown`` types a character.  Coordinates from ``execute_at`` are
    frame-relative and are translated by the frame element's offset.
    """

    def __init__(self, page: Any) -> None:
        self.page = page

    async def target_point(self, element: Any) -> Optional[Tuple[float, float]]:
        await element.scroll_into_view_if_needed()
        box = await element.bounding_box()
        if not box:
            return None
        return (box["x"] + box["width"] / 2, box["y"] + box["height"] / 2)

    async def _replay(self, steps: Sequence[EventStep], dx: float = 0.0, dy: float = 0.0) -> None:
        for step in steps:
            if step.type == "pointerover":
                await self.page.mouse.move(step.x + dx, step.y + dy, steps=random.randint(5, 10))
            elif step.type == "mousedown":
                await self.page.mouse.down()
            elif step.type == "mouseup":
                await self.page.mouse.up()
            elif step.type == "keydown" and step.key:
                await self.page.keyboard.type(step.key)
            wait = step.sample_delay()
            if wait:
                await asyncio.sleep(wait)

    async def execute(self, element: Any, steps: Sequence[EventStep]) -> None:
        await self._replay(steps)

    async def execute_at(self, frame: Any, steps: Sequence[EventStep]) -> None:
        dx = dy = 0.0
        frame_element = await frame.frame_element() if frame.parent_frame else None
        if frame_element is not None:
            box = await frame_element.bounding_box()
            if box:
                dx, dy = box["x"], box["y"]
        await self._replay(steps, dx, dy)


class InteractionDriver:
    """Replay human-like interaction on located or blind targets.

    Args:
        backend: Input backend; DOM dispatch when omitted.
        profile: :class:`HumanProfile` name for timing; random if unset.
        typing_delay_ms: Optional ``(min, max)`` per-key delay override.
        jitter: Maximum pixel offset from the element centre.
    """

    def __init__(
        self,
        backend: Optional[InputBackend] = None,
        profile: Optional[str] = None,
        typing_delay_ms: Optional[Tuple[int, int]] = None,
        jitter: float = DEFAULT_JITTER_PX,
    ) -> None:
        self.backend: InputBackend = backend or DomEventBackend()
        self.profile = HumanProfile.resolve(profile)
        self.typing_delay_ms = typing_delay_ms
        self.jitter = jitter

    def _event_delay(self) -> Tuple[float, float]:
        return HumanProfile.get_range(self.profile, "event")

    def _typing_delay(self) -> Tuple[float, float]:
        if self.typing_delay_ms:
            low, high = self.typing_delay_ms
            return (low / 1000.0, high / 1000.0)
        return HumanProfile.get_range(self.profile, "type")

    async def pause(self, action_type: str = "think") -> None:
        await asyncio.sleep(HumanProfile.get_action_delay(self.profile, action_type))

    async def _checked_state(self, element: Any) -> Optional[bool]:
        try:
            state = await element.evaluate(scripts.CHECKED_STATE)
        except Exception as e:
            logger.debug("Checked-state probe failed: %s", e)
            return None
        return state if isinstance(state, bool) else None

    async def interact(self, target: InteractionTarget, verify_checked: bool = True) -> bool:
        """Click *target* with a synthetic pointer sequence.

        For checkbox-like controls the checked state is compared before
        and after; if it did not flip, the fallbacks run in order and
        stop at the first one that flips it.  ``verify_checked=False``
        skips that check for controls whose click opens something else
        instead of toggling.

        Returns:
            ``True`` if the sequence ran (and, for checkboxes, the
            state flipped); ``False`` otherwise.
        """
        element = target.element
        try:
            before = await self._checked_state(element) if verify_checked else None
            point = await self.backend.target_point(element)
            if point is None:
                logger.debug("No geometry for %s", target.description)
                return False

            x, y = jitter_point(point[0], point[1], self.jitter)
            logger.debug("Clicking %s at (%.0f, %.0f)", target.description, x, y)
            await self.backend.execute(element, build_click_sequence(x, y, self._event_delay()))

            if before is None:
                return True
            if await self._checked_state(element) != before:
                return True

            for strategy in FALLBACK_STRATEGIES:
                clicked = await element.evaluate(scripts.FALLBACK_CLICK, strategy)
                if not clicked:
                    continue
                if await self._checked_state(element) != before:
                    logger.debug("Fallback %s flipped %s", strategy, target.description)
                    return True
            logger.debug("No strategy flipped %s", target.description)
            return False
        except Exception as e:
            logger.warning("Interaction with %s failed: %s", target.description, e)
            return False

    def blind_points(self, width: float, height: float) -> List[Tuple[float, float]]:
        """Heuristic click points for a widget frame of the given size."""
        points = [CHECKBOX_OFFSET]
        if width > 0 and height > 0:
            center = (width / 2.0, height / 2.0)
            if center != CHECKBOX_OFFSET:
                points.append(center)
        return points

    async def blind_interact(self, frame: Any, width: float, height: float) -> None:
        """Fire click sequences at heuristic points; never raises."""
        for px, py in self.blind_points(width, height):
            try:
                x, y = jitter_point(px, py, self.jitter)
                logger.debug("Blind click at (%.0f, %.0f)", x, y)
                await self.backend.execute_at(frame, build_click_sequence(x, y, self._event_delay()))
            except Exception as e:
                logger.debug("Blind click at (%.0f, %.0f) failed: %s", px, py, e)

    async def type_text(self, element: Any, text: str) -> bool:
        """Clear *element* and type *text* key by key."""
        try:
            await element.evaluate(scripts.CLEAR_INPUT)
            steps = build_typing_sequence(text, self._typing_delay())
            await self.backend.execute(element, steps)
            return True
        except Exception as e:
            logger.warning("Typing into input failed: %s", e)
            return False
