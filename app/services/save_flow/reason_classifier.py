"""
Cancellation reason classifier.

Deterministic keyword matching so the same text always lands in the same
bucket for analytics and support triage.
"""

from app.schemas.save_flow import ReasonCategory

# Checked in order; the first category with a matching keyword wins.
REASON_KEYWORDS: list[tuple[ReasonCategory, tuple[str, ...]]] = [
    (ReasonCategory.TOO_EXPENSIVE, ("expensive", "price", "cost", "afford", "budget")),
    (ReasonCategory.WRONG_PRODUCT, ("product", "taste", "flavor", "don't like", "wrong")),
    (ReasonCategory.TOO_MUCH, ("too much", "pile", "can't finish", "backlog")),
    (ReasonCategory.SHIPPING_ISSUES, ("shipping", "delivery", "late", "damaged")),
    (ReasonCategory.NOT_USING, ("don't use", "not using", "forgot", "busy")),
]


def categorize(reason: str) -> ReasonCategory:
    """Map free-text cancellation reason to a category, ``other`` if nothing matches."""
    text = (reason or "").lower().replace("’", "'")

    for category, keywords in REASON_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return category

    return ReasonCategory.OTHER
