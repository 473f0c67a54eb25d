import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.bridge import BridgeResponse
from core.errors import BridgeTimeout, DetectionMiss
from core.notifier import SUCCESS_MESSAGE
from core.orchestrator import ChallengeOrchestrator, PageState
from solvers.base import ChallengeFlow
from solvers.stabilization import WidgetStatus


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeFlow(ChallengeFlow):
    """Flow whose detect/attempt outcomes are scripted."""

    def __init__(self, kind, present=True, outcomes=(), solved=True, max_attempts=30):
        super().__init__(max_attempts=max_attempts)
        self.kind = kind
        self.present = present
        self.outcomes = list(outcomes)
        self.solved = solved
        self.attempt_calls = 0

    async def detect(self, page):
        return self.present

    async def is_solved(self, page):
        return self.solved

    async def attempt(self, page, state):
        self.attempt_calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else WidgetStatus.SOLVING
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def clock():
    return FakeClock()


def make_bridge():
    bridge = MagicMock()
    bridge.request = AsyncMock(return_value=BridgeResponse(success=True))
    return bridge


async def run_ticks(orchestrator, page, state, clock, count, step=5.0):
    for _ in range(count):
        await orchestrator.tick(page, state)
        clock.advance(step)


class TestDetection:

    @pytest.mark.asyncio
    async def test_first_detected_flow_wins(self, clock):
        recaptcha = FakeFlow("recaptcha")
        turnstile = FakeFlow("turnstile")
        orchestrator = ChallengeOrchestrator([recaptcha, turnstile], clock=clock)
        assert await orchestrator.detect(MagicMock()) is recaptcha

    @pytest.mark.asyncio
    async def test_detect_errors_fall_through(self, clock):
        broken = FakeFlow("recaptcha")
        broken.detect = AsyncMock(side_effect=RuntimeError("page navigated"))
        turnstile = FakeFlow("turnstile")
        orchestrator = ChallengeOrchestrator([broken, turnstile], clock=clock)
        assert await orchestrator.detect(MagicMock()) is turnstile

    @pytest.mark.asyncio
    async def test_no_challenge_drops_widget_state(self, clock):
        flow = FakeFlow("turnstile", outcomes=[WidgetStatus.WAITING])
        orchestrator = ChallengeOrchestrator([flow], clock=clock)
        state = PageState()
        await orchestrator.tick(MagicMock(), state)
        assert "turnstile" in state.widgets

        flow.present = False
        await orchestrator.tick(MagicMock(), state)
        assert state.widgets == {}


class TestTick:

    @pytest.mark.asyncio
    async def test_in_flight_action_skips_tick(self, clock):
        flow = FakeFlow("turnstile")
        orchestrator = ChallengeOrchestrator([flow], clock=clock)
        state = PageState(is_solving=True)
        await orchestrator.tick(MagicMock(), state)
        assert flow.attempt_calls == 0
        assert state.ticks == 1

    @pytest.mark.asyncio
    async def test_debounce_between_actions(self, clock):
        flow = FakeFlow("turnstile")
        orchestrator = ChallengeOrchestrator([flow], debounce=2.0, clock=clock)
        state = PageState()
        page = MagicMock()

        await orchestrator.tick(page, state)
        clock.advance(1.0)
        await orchestrator.tick(page, state)
        assert flow.attempt_calls == 1

        clock.advance(1.5)
        await orchestrator.tick(page, state)
        assert flow.attempt_calls == 2

    @pytest.mark.asyncio
    async def test_waiting_does_not_consume_attempts(self, clock):
        flow = FakeFlow("turnstile", outcomes=[WidgetStatus.WAITING] * 3)
        orchestrator = ChallengeOrchestrator([flow], clock=clock)
        state = PageState()
        await run_ticks(orchestrator, MagicMock(), state, clock, 3)
        widget = state.widgets["turnstile"]
        assert widget.attempts == 0
        assert widget.status is WidgetStatus.WAITING

    @pytest.mark.asyncio
    async def test_attempt_budget_is_never_exceeded(self, clock, caplog):
        flow = FakeFlow("recaptcha", max_attempts=5, solved=False)
        orchestrator = ChallengeOrchestrator([flow], clock=clock)
        state = PageState()
        await run_ticks(orchestrator, MagicMock(), state, clock, 12)

        widget = state.widgets["recaptcha"]
        assert widget.attempts == 5
        assert flow.attempt_calls == 5
        assert widget.exhausted
        assert caplog.text.count("Could not solve after 5 attempts") == 1

    @pytest.mark.asyncio
    async def test_success_after_last_attempt_is_recorded(self, clock, caplog):
        bridge = make_bridge()
        flow = FakeFlow("recaptcha", max_attempts=2, solved=False)
        orchestrator = ChallengeOrchestrator([flow], bridge=bridge, clock=clock)
        state = PageState()
        page = MagicMock()
        await run_ticks(orchestrator, page, state, clock, 2)
        assert state.widgets["recaptcha"].exhausted

        # Success marker shows up only after the budget is spent
        flow.solved = True
        await run_ticks(orchestrator, page, state, clock, 3)

        widget = state.widgets["recaptcha"]
        assert widget.status is WidgetStatus.SOLVED
        assert widget.notified is True
        assert state.solved
        assert flow.attempt_calls == 2
        bridge.request.assert_awaited_once()
        assert "Could not solve" not in caplog.text

    @pytest.mark.asyncio
    async def test_exception_consumes_attempt_and_is_contained(self, clock):
        flow = FakeFlow("recaptcha", outcomes=[DetectionMiss("no checkbox")])
        orchestrator = ChallengeOrchestrator([flow], clock=clock)
        state = PageState()
        await orchestrator.tick(MagicMock(), state)

        widget = state.widgets["recaptcha"]
        assert widget.attempts == 1
        assert widget.last_error == "no checkbox"
        assert state.is_solving is False
        assert state.last_action_ts == clock.now

    @pytest.mark.asyncio
    async def test_fatal_is_logged_once_and_consumes_nothing(self, clock, caplog):
        flow = FakeFlow("turnstile", outcomes=[WidgetStatus.FATAL] * 3)
        orchestrator = ChallengeOrchestrator([flow], clock=clock)
        state = PageState()
        await run_ticks(orchestrator, MagicMock(), state, clock, 3)

        widget = state.widgets["turnstile"]
        assert widget.status is WidgetStatus.FATAL
        assert widget.attempts == 0
        assert caplog.text.count("fatal state") == 1

    @pytest.mark.asyncio
    async def test_success_notifies_exactly_once(self, clock):
        bridge = make_bridge()
        flow = FakeFlow("turnstile", outcomes=[WidgetStatus.SOLVING, WidgetStatus.SOLVED])
        orchestrator = ChallengeOrchestrator([flow], bridge=bridge, notification_title="T", clock=clock)
        state = PageState()
        await run_ticks(orchestrator, MagicMock(), state, clock, 5)

        assert state.solved
        assert flow.attempt_calls == 2
        bridge.request.assert_awaited_once_with("notify", title="T", message=SUCCESS_MESSAGE)

    @pytest.mark.asyncio
    async def test_notify_timeout_is_tolerated(self, clock):
        bridge = make_bridge()
        bridge.request.side_effect = BridgeTimeout("notify", 1)
        flow = FakeFlow("turnstile", outcomes=[WidgetStatus.SOLVED])
        orchestrator = ChallengeOrchestrator([flow], bridge=bridge, clock=clock)
        state = PageState()
        await orchestrator.tick(MagicMock(), state)
        assert state.widgets["turnstile"].notified is True

    @pytest.mark.asyncio
    async def test_reset_widget_is_worked_again(self, clock):
        bridge = make_bridge()
        flow = FakeFlow("turnstile", outcomes=[WidgetStatus.SOLVED, WidgetStatus.SOLVING])
        orchestrator = ChallengeOrchestrator([flow], bridge=bridge, clock=clock)
        state = PageState()
        page = MagicMock()

        await orchestrator.tick(page, state)
        widget = state.widgets["turnstile"]
        assert widget.status is WidgetStatus.SOLVED

        flow.solved = False
        await orchestrator.tick(page, state)
        assert widget.status is WidgetStatus.IDLE
        assert widget.notified is False

        await orchestrator.tick(page, state)
        assert flow.attempt_calls == 2
        assert widget.attempts == 1

    @pytest.mark.asyncio
    async def test_summary_rows(self, clock):
        flow = FakeFlow("turnstile", outcomes=[WidgetStatus.SOLVING])
        orchestrator = ChallengeOrchestrator([flow], clock=clock)
        state = PageState()
        await orchestrator.tick(MagicMock(), state)
        [row] = state.summary()
        assert row["kind"] == "turnstile"
        assert row["status"] == "SOLVING"
        assert row["attempts"] == 1


class TestRunLoop:

    @pytest.mark.asyncio
    async def test_stop_ends_loop(self):
        flow = FakeFlow("turnstile", outcomes=[WidgetStatus.WAITING] * 100)
        orchestrator = ChallengeOrchestrator([flow], poll_interval=0.01, debounce=0)
        page = MagicMock()
        page.is_closed.return_value = False

        task = asyncio.create_task(orchestrator.run(page))
        await asyncio.sleep(0.05)
        orchestrator.stop()
        state = await asyncio.wait_for(task, timeout=1)
        assert state.ticks >= 1

    @pytest.mark.asyncio
    async def test_closed_page_ends_loop(self):
        orchestrator = ChallengeOrchestrator([FakeFlow("turnstile")], poll_interval=0.01)
        page = MagicMock()
        page.is_closed.return_value = True
        state = await asyncio.wait_for(orchestrator.run(page), timeout=1)
        assert state.ticks == 0
