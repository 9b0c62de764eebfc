"""
Overall confidence score from per-field confidence tiers.

Fields are grouped into amounts, dates and names. The score is the weighted
mean of the per-group mean tier scores, over groups that have at least one
field. When no grouped field is present the plain mean over all fields is
used instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from invoice_pipeline.models.invoice import ConfidenceTier, ExtractedField

TIER_SCORES: dict[ConfidenceTier, float] = {
    ConfidenceTier.HIGH: 0.9,
    ConfidenceTier.MEDIUM: 0.6,
    ConfidenceTier.LOW: 0.3,
}

NAME_FIELDS = frozenset(
    {
        "vendor_name",
        "community_name",
        "payment_remittance_entity",
        "payment_remittance_entity_care_of",
    }
)


@dataclass(frozen=True)
class ConfidenceWeights:
    amounts: float = 0.4
    dates: float = 0.3
    names: float = 0.3

    def __post_init__(self) -> None:
        if min(self.amounts, self.dates, self.names) < 0:
            raise ValueError("confidence weights must be non-negative")


def field_group(name: str) -> Optional[str]:
    if name.endswith("_amount"):
        return "amounts"
    if name.endswith("_date"):
        return "dates"
    if name in NAME_FIELDS:
        return "names"
    return None


def _mean(values: list[float]) -> float:
    return sum(values) / len(values)


def calculate_confidence(
    fields: Mapping[str, ExtractedField],
    weights: Optional[ConfidenceWeights] = None,
) -> Optional[float]:
    """Score extracted fields in [0, 1], rounded to two decimals.

    Returns:
        None when there are no fields at all
    """
    if not fields:
        return None
    weights = weights or ConfidenceWeights()

    groups: dict[str, list[float]] = {}
    for name, field in fields.items():
        group = field_group(name)
        if group is not None:
            groups.setdefault(group, []).append(TIER_SCORES[ConfidenceTier(field.confidence)])

    weighted = [(getattr(weights, g), _mean(scores)) for g, scores in groups.items()]
    total_weight = sum(w for w, _ in weighted)
    if total_weight > 0:
        score = sum(w * s for w, s in weighted) / total_weight
    else:
        score = _mean([TIER_SCORES[ConfidenceTier(f.confidence)] for f in fields.values()])
    return round(score, 2)
