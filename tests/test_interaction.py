from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from browser import scripts
from browser.interaction import (
    CHECKBOX_OFFSET,
    CLICK_SEQUENCE,
    DomEventBackend,
    InteractionDriver,
    MouseBackend,
    build_click_sequence,
    build_typing_sequence,
)
from browser.locator import InteractionTarget


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("browser.interaction.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


class FakeCheckbox:
    """Element whose ``evaluate`` interprets the payloads it receives.

    ``flip_on`` names what actually toggles the checked state: the
    synthetic ``click`` event or one of the fallback strategies.
    """

    def __init__(self, checked=False, flip_on="click", box=True):
        self.checked = checked
        self.flip_on = flip_on
        self.box = box
        self.events = []
        self.fallbacks = []

    async def evaluate(self, script, arg=None):
        if script == scripts.CHECKED_STATE:
            return self.checked
        if script == scripts.PREPARE_TARGET:
            return {"x": 20, "y": 30, "width": 16, "height": 16} if self.box else None
        if script == scripts.DISPATCH_EVENT:
            self.events.append(arg["type"])
            if arg["type"] == "click" and self.flip_on == "click":
                self.checked = not self.checked
            return True
        if script == scripts.FALLBACK_CLICK:
            self.fallbacks.append(arg)
            if arg == self.flip_on:
                self.checked = not self.checked
            return True
        if script == scripts.CLEAR_INPUT:
            self.events.append("clear")
            return None
        raise AssertionError(f"unexpected script {script!r}")


def target_for(element):
    return InteractionTarget(root=None, path=(), element=element, owner=None, selector="input")


class TestSequences:

    def test_click_sequence_order(self):
        steps = build_click_sequence(10, 20)
        assert [s.type for s in steps] == [
            "pointerover", "mouseover", "pointerdown", "mousedown",
            "focus", "pointerup", "mouseup", "click",
        ]
        assert all(s.x == 10 and s.y == 20 for s in steps)
        assert len(steps) == len(CLICK_SEQUENCE)

    def test_typing_sequence(self):
        steps = build_typing_sequence("85")
        assert [s.type for s in steps] == [
            "keydown", "keypress", "input", "keyup",
            "keydown", "keypress", "input", "keyup",
            "change",
        ]
        assert steps[0].key == "8" and steps[4].key == "5"

    def test_step_to_js(self):
        step = build_click_sequence(1, 2)[0]
        assert step.to_js() == {"type": "pointerover", "kind": "pointer", "x": 1, "y": 2, "key": None}


class TestInteractionDriver:

    @pytest.mark.asyncio
    async def test_click_flips_checkbox_without_fallback(self):
        element = FakeCheckbox()
        driver = InteractionDriver(profile="fast")
        assert await driver.interact(target_for(element)) is True
        assert element.checked is True
        assert element.events[-1] == "click"
        assert element.fallbacks == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("strategy,tried", [
        ("native", ["native"]),
        ("label", ["native", "label"]),
        ("container", ["native", "label", "container"]),
    ])
    async def test_fallback_escalation_stops_at_first_flip(self, strategy, tried):
        element = FakeCheckbox(flip_on=strategy)
        driver = InteractionDriver(profile="fast")
        assert await driver.interact(target_for(element)) is True
        assert element.fallbacks == tried
        assert element.checked is True

    @pytest.mark.asyncio
    async def test_nothing_flips(self):
        element = FakeCheckbox(flip_on="never")
        driver = InteractionDriver(profile="fast")
        assert await driver.interact(target_for(element)) is False
        assert element.fallbacks == ["native", "label", "container"]

    @pytest.mark.asyncio
    async def test_verify_checked_disabled_skips_fallbacks(self):
        element = FakeCheckbox(flip_on="never")
        driver = InteractionDriver(profile="fast")
        assert await driver.interact(target_for(element), verify_checked=False) is True
        assert element.fallbacks == []

    @pytest.mark.asyncio
    async def test_no_geometry(self):
        element = FakeCheckbox(box=False)
        driver = InteractionDriver(profile="fast")
        assert await driver.interact(target_for(element)) is False
        assert element.events == []

    @pytest.mark.asyncio
    async def test_errors_return_false(self):
        element = MagicMock()
        element.evaluate = AsyncMock(side_effect=RuntimeError("detached"))
        driver = InteractionDriver(profile="fast")
        assert await driver.interact(target_for(element)) is False

    @pytest.mark.asyncio
    async def test_blind_interact_targets_checkbox_then_center(self):
        frame = MagicMock()
        frame.evaluate = AsyncMock(return_value=True)
        driver = InteractionDriver(profile="fast", jitter=0)
        await driver.blind_interact(frame, 300, 65)

        points = [
            (call.args[1]["x"], call.args[1]["y"])
            for call in frame.evaluate.await_args_list
            if call.args[1]["type"] == "click"
        ]
        assert points == [CHECKBOX_OFFSET, (150.0, 32.5)]
        assert all(call.args[0] == scripts.DISPATCH_AT_POINT for call in frame.evaluate.await_args_list)

    @pytest.mark.asyncio
    async def test_blind_interact_never_raises(self):
        frame = MagicMock()
        frame.evaluate = AsyncMock(side_effect=RuntimeError("frame gone"))
        driver = InteractionDriver(profile="fast")
        await driver.blind_interact(frame, 0, 0)
        assert frame.evaluate.await_count == 1

    @pytest.mark.asyncio
    async def test_type_text(self):
        element = FakeCheckbox()
        driver = InteractionDriver(profile="fast", typing_delay_ms=(30, 70))
        assert await driver.type_text(element, "12") is True
        assert element.events[0] == "clear"
        assert element.events[-1] == "change"
        assert element.events.count("keydown") == 2


class TestMouseBackend:

    @pytest.mark.asyncio
    async def test_replays_pointer_steps_with_mouse(self):
        page = MagicMock()
        page.mouse.move = AsyncMock()
        page.mouse.down = AsyncMock()
        page.mouse.up = AsyncMock()
        element = MagicMock()
        element.scroll_into_view_if_needed = AsyncMock()
        element.bounding_box = AsyncMock(return_value={"x": 10, "y": 20, "width": 20, "height": 10})

        backend = MouseBackend(page)
        assert await backend.target_point(element) == (20, 25)
        await backend.execute(element, build_click_sequence(20, 25))

        page.mouse.move.assert_awaited_once()
        assert page.mouse.move.await_args.args == (20, 25)
        page.mouse.down.assert_awaited_once()
        page.mouse.up.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_execute_at_offsets_by_frame_position(self):
        page = MagicMock()
        page.mouse.move = AsyncMock()
        page.mouse.down = AsyncMock()
        page.mouse.up = AsyncMock()
        frame_element = MagicMock()
        frame_element.bounding_box = AsyncMock(return_value={"x": 100, "y": 200, "width": 300, "height": 65})
        frame = MagicMock()
        frame.parent_frame = MagicMock()
        frame.frame_element = AsyncMock(return_value=frame_element)

        await MouseBackend(page).execute_at(frame, build_click_sequence(30, 32))
        assert page.mouse.move.await_args.args == (130, 232)

    @pytest.mark.asyncio
    async def test_typing_uses_keyboard(self):
        page = MagicMock()
        page.keyboard.type = AsyncMock()
        await MouseBackend(page).execute(MagicMock(), build_typing_sequence("42"))
        assert [c.args[0] for c in page.keyboard.type.await_args_list] == ["4", "2"]


class TestDomEventBackend:

    @pytest.mark.asyncio
    async def test_dispatches_each_step(self):
        element = MagicMock()
        element.evaluate = AsyncMock(return_value=True)
        await DomEventBackend().execute(element, build_click_sequence(5, 5))
        assert element.evaluate.await_count == len(CLICK_SEQUENCE)
