"""Feed mode selection and threshold crossing detection."""

from __future__ import annotations

from ..models import FeedMode, ModeSwitchEvent


def select_mode(liked_count: int, threshold: int) -> FeedMode:
    if liked_count >= threshold:
        return "personalized"
    return "cold_start"


def detect_crossing(
    previous_count: int, current_count: int, threshold: int
) -> ModeSwitchEvent | None:
    """Return an event when a toggle lands exactly on the threshold from below.

    Only the crossing itself produces an event; later toggles above the
    threshold and unlikes that fall back onto it do not. An unlike from
    ``threshold + 1`` leaves the feed in personalized mode, so there is no
    mode change to announce and the existing feed already reflects it.
    """

    if previous_count < threshold and current_count == threshold:
        return ModeSwitchEvent(liked_count=current_count)
    return None
