"""
Tests for the HumanProfile timing system.
"""
from unittest.mock import patch

import pytest

from browser.stealth_hub import HumanProfile

ACTIONS = ["event", "type", "settle", "think"]


@pytest.mark.parametrize("profile", HumanProfile.ALL_PROFILES)
def test_every_profile_defines_every_action(profile):
    for action in ACTIONS:
        low, high = HumanProfile.get_range(profile, action)
        assert 0 < low < high


@pytest.mark.parametrize("profile", [HumanProfile.NORMAL_USER, HumanProfile.DISTRACTED_USER])
def test_delays_stay_in_range(profile):
    for action in ACTIONS:
        low, high = HumanProfile.get_range(profile, action)
        for _ in range(50):
            assert low <= HumanProfile.get_action_delay(profile, action) <= high


def test_fast_user_bursts_below_minimum():
    low, _ = HumanProfile.get_range(HumanProfile.FAST_USER, "event")
    with patch("browser.stealth_hub.random.random", return_value=0.0):
        delay = HumanProfile.get_action_delay(HumanProfile.FAST_USER, "event")
    assert low * 0.5 <= delay <= low


def test_cautious_user_lingers_past_maximum():
    _, high = HumanProfile.get_range(HumanProfile.CAUTIOUS_USER, "settle")
    with patch("browser.stealth_hub.random.random", return_value=0.0):
        delay = HumanProfile.get_action_delay(HumanProfile.CAUTIOUS_USER, "settle")
    assert high <= delay <= high * 1.5


def test_unknown_action_uses_event_range():
    assert HumanProfile.get_range(HumanProfile.NORMAL_USER, "scroll") == \
        HumanProfile.get_range(HumanProfile.NORMAL_USER, "event")


def test_resolve():
    assert HumanProfile.resolve("cautious") == "cautious"
    assert HumanProfile.resolve(None) in HumanProfile.ALL_PROFILES
    assert HumanProfile.resolve("sloth") in HumanProfile.ALL_PROFILES


def test_random_profile_distribution():
    counts = {profile: 0 for profile in HumanProfile.ALL_PROFILES}
    for _ in range(1000):
        counts[HumanProfile.get_random_profile()] += 1
    assert counts[HumanProfile.NORMAL_USER] > counts[HumanProfile.DISTRACTED_USER]
    assert all(count > 0 for count in counts.values())
