"""Tests for cancellation reason classification."""

import pytest

from app.schemas.save_flow import ReasonCategory
from app.services.save_flow.reason_classifier import categorize


@pytest.mark.parametrize(
    "reason,expected",
    [
        ("It's too expensive for my budget", ReasonCategory.TOO_EXPENSIVE),
        ("The PRICE went up again", ReasonCategory.TOO_EXPENSIVE),
        ("I can't afford it right now", ReasonCategory.TOO_EXPENSIVE),
        ("I don't like the flavor", ReasonCategory.WRONG_PRODUCT),
        ("Wrong size every time", ReasonCategory.WRONG_PRODUCT),
        ("There's a pile in my pantry", ReasonCategory.TOO_MUCH),
        ("I have a backlog of boxes", ReasonCategory.TOO_MUCH),
        ("Delivery is always late", ReasonCategory.SHIPPING_ISSUES),
        ("The box arrived damaged", ReasonCategory.SHIPPING_ISSUES),
        ("I don't use it anymore", ReasonCategory.NOT_USING),
        ("I don’t use it anymore", ReasonCategory.NOT_USING),
        ("I forgot I even had it", ReasonCategory.NOT_USING),
        ("xyz", ReasonCategory.OTHER),
        ("", ReasonCategory.OTHER),
    ],
)
def test_categorize(reason, expected):
    assert categorize(reason) == expected


def test_first_matching_category_wins():
    """Price keywords are checked before shipping keywords."""
    assert categorize("shipping costs are too high") == ReasonCategory.TOO_EXPENSIVE


def test_none_maps_to_other():
    assert categorize(None) == ReasonCategory.OTHER


def test_is_deterministic():
    reason = "Delivery keeps showing up late"
    assert {categorize(reason) for _ in range(10)} == {ReasonCategory.SHIPPING_ISSUES}
