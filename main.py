"""
Challenge Solver - Main Entry Point

Opens a URL in a plain Playwright Chromium, attaches the challenge
engine to the page and polls until the widget is solved, the timeout
expires, or the page closes.  Browser fingerprinting, proxies and
profile management are left to whatever launches the browser in
production; this entry point is for running the engine standalone.

Usage:
    python main.py --url https://example.com/login
    python main.py --url https://example.com --visible --timeout 180
    python main.py --url https://example.com --mouse --log-level DEBUG
"""
from dotenv import load_dotenv

# Load environment variables from .env file into os.environ
load_dotenv()

import asyncio
import argparse
import logging
import sys
import time
from typing import Any, Optional, Tuple

from playwright.async_api import async_playwright

from browser.interaction import InteractionDriver, MouseBackend
from browser.locator import TargetLocator
from core.bridge import BackgroundService, CrossContextBridge
from core.config import SolverSettings
from core.logging_setup import setup_logging
from core.monitoring import SessionSummary
from core.orchestrator import ChallengeOrchestrator, PageState
from solvers.recaptcha import RecaptchaFlow
from solvers.turnstile import TurnstileFlow

logger = logging.getLogger(__name__)


def build_engine(
    settings: SolverSettings,
    page: Optional[Any] = None,
    use_mouse: bool = False,
) -> Tuple[BackgroundService, CrossContextBridge, ChallengeOrchestrator]:
    """Wire the background service, bridge, flows and orchestrator.

    Args:
        settings: Loaded settings.
        page: Page whose mouse drives :class:`MouseBackend`; required
            only when ``use_mouse`` is set.
        use_mouse: Browser-level input instead of DOM event dispatch.
    """
    service = BackgroundService.from_settings(settings)
    bridge = CrossContextBridge(service.handle, timeout=settings.bridge_timeout_seconds)

    driver = InteractionDriver(
        backend=MouseBackend(page) if use_mouse and page is not None else None,
        profile=settings.behavior_profile,
        typing_delay_ms=settings.typing_delay_range,
    )
    locator = TargetLocator()
    flows = [
        RecaptchaFlow(
            bridge,
            bridge_timeout=settings.bridge_timeout_seconds,
            locator=locator,
            driver=driver,
            max_attempts=settings.recaptcha_max_attempts,
        ),
        TurnstileFlow(
            locator=locator,
            driver=driver,
            max_attempts=settings.max_attempts,
            max_stabilization_attempts=settings.max_stabilization_attempts,
        ),
    ]
    orchestrator = ChallengeOrchestrator(
        flows,
        bridge=bridge,
        poll_interval=settings.poll_interval_seconds,
        debounce=settings.debounce_seconds,
        notification_title=settings.notification_title,
    )
    return service, bridge, orchestrator


async def solve_url(settings: SolverSettings, url: str, timeout: float, use_mouse: bool) -> PageState:
    """Open *url* and run the engine until solved or *timeout* seconds pass."""
    state = PageState()
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=settings.headless)
        page = await browser.new_page()
        page.set_default_navigation_timeout(settings.navigation_timeout_ms)

        service, bridge, orchestrator = build_engine(settings, page, use_mouse)
        service.start()
        bridge.start()
        ping = await bridge.request("ping", timeout=5)
        logger.debug("Background service alive: %s", ping.pong)

        poller: Optional[asyncio.Task] = None
        try:
            logger.info("Navigating to %s", url)
            await page.goto(url, wait_until="domcontentloaded")
            poller = asyncio.create_task(orchestrator.run(page, state))

            deadline = time.monotonic() + timeout
            while time.monotonic() < deadline and not poller.done():
                if state.solved:
                    break
                await asyncio.sleep(settings.poll_interval_seconds)
            if not state.solved:
                logger.warning("No solve within %.0fs", timeout)
        finally:
            orchestrator.stop()
            if poller is not None:
                try:
                    await asyncio.wait_for(poller, timeout=5)
                except asyncio.TimeoutError:
                    logger.warning("Poll loop did not stop in time")
            await bridge.close()
            await service.stop()
            await browser.close()
    return state


def settings_from_args(args: argparse.Namespace) -> SolverSettings:
    """Environment settings with the CLI overrides applied."""
    settings = SolverSettings()
    if args.visible:
        settings.headless = False
    if args.log_level:
        settings.log_level = args.log_level
    return settings


async def main() -> int:
    """
    1. Parses command line arguments.
    2. Sets up logging.
    3. Runs the engine against the URL and prints a summary.
    """
    parser = argparse.ArgumentParser(description="Challenge Solver - standalone runner")
    parser.add_argument("--url", required=True, help="Page embedding the challenge")
    parser.add_argument("--visible", action="store_true", help="Show browser")
    parser.add_argument("--timeout", type=float, default=120.0, help="Seconds to wait for a solve")
    parser.add_argument("--log-level", type=str, default=None, help="Override LOG_LEVEL")
    parser.add_argument("--mouse", action="store_true", help="Use browser-level mouse input")
    args = parser.parse_args()

    settings = settings_from_args(args)
    setup_logging(settings.log_level)

    started = time.monotonic()
    try:
        state = await solve_url(settings, args.url, args.timeout, args.mouse)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130

    SessionSummary().display(state, args.url, time.monotonic() - started)
    return 0 if state.solved else 1


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
