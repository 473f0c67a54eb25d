"""Human timing profiles for synthetic interaction.

:class:`HumanProfile` names a handful of behaviour archetypes (fast,
normal, cautious, distracted) and maps each to per-action delay ranges.
The interaction driver picks one profile per page session and derives
every inter-event gap, keystroke delay and post-click settle time from
it, so the timing pattern stays internally consistent across a solve.
"""

import random
import logging
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class HumanProfile:
    """Human behavioural timing profiles.

    Typical usage::

        profile = HumanProfile.get_random_profile()
        delay   = HumanProfile.get_action_delay(profile, "event")
        await asyncio.sleep(delay)
    """

    FAST_USER = "fast"
    NORMAL_USER = "normal"
    CAUTIOUS_USER = "cautious"
    DISTRACTED_USER = "distracted"

    ALL_PROFILES = [
        FAST_USER, NORMAL_USER, CAUTIOUS_USER, DISTRACTED_USER,
    ]

    # (min, max) in seconds.  "event" is the gap between two events of
    # one pointer sequence, "type" is per keystroke, "settle" is the
    # wait after a click before re-checking state, "think" precedes an
    # action on a freshly appeared control.
    TIMING_RANGES: Dict[str, Dict[str, Tuple[float, float]]] = {
        FAST_USER: {
            "event": (0.010, 0.040),
            "type": (0.030, 0.060),
            "settle": (0.8, 1.5),
            "think": (0.3, 0.6),
        },
        NORMAL_USER: {
            "event": (0.020, 0.080),
            "type": (0.030, 0.075),
            "settle": (1.0, 2.0),
            "think": (0.5, 1.0),
        },
        CAUTIOUS_USER: {
            "event": (0.040, 0.120),
            "type": (0.050, 0.120),
            "settle": (2.0, 3.0),
            "think": (1.0, 2.0),
        },
        DISTRACTED_USER: {
            "event": (0.030, 0.150),
            "type": (0.040, 0.200),
            "settle": (1.5, 3.0),
            "think": (0.8, 2.5),
        },
    }

    @staticmethod
    def get_random_profile() -> str:
        """Return a random profile, weighted towards ``NORMAL_USER``."""
        # FAST, NORMAL, CAUTIOUS, DISTRACTED
        weights = [15, 50, 25, 10]
        return random.choices(
            HumanProfile.ALL_PROFILES, weights=weights, k=1,
        )[0]

    @staticmethod
    def resolve(profile: Optional[str]) -> str:
        """Return *profile* if known, otherwise a random one."""
        if profile in HumanProfile.TIMING_RANGES:
            return profile
        if profile:
            logger.warning("Unknown behaviour profile %r; picking one at random", profile)
        return HumanProfile.get_random_profile()

    @staticmethod
    def get_range(
        profile: str, action_type: str = "event",
    ) -> Tuple[float, float]:
        """Return the ``(min, max)`` seconds range for an action."""
        ranges = HumanProfile.TIMING_RANGES.get(
            profile, HumanProfile.TIMING_RANGES[HumanProfile.NORMAL_USER],
        )
        return ranges.get(action_type, ranges["event"])

    @staticmethod
    def get_action_delay(
        profile: str,
        action_type: str = "event",
    ) -> float:
        """Sample a delay in seconds for an action under *profile*.

        Fast users occasionally burst; cautious users occasionally
        linger past their upper bound.
        """
        min_delay, max_delay = HumanProfile.get_range(profile, action_type)

        if profile == HumanProfile.FAST_USER and random.random() < 0.20:
            return random.uniform(min_delay * 0.5, min_delay)
        if profile == HumanProfile.CAUTIOUS_USER and random.random() < 0.10:
            return random.uniform(max_delay, max_delay * 1.5)

        return random.uniform(min_delay, max_delay)
