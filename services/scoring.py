"""
Scoring - weighted aggregation of activity scores and conversion of a
raw percentage into a grade label.
"""
import math
from typing import Iterable, Optional, Tuple

from config import Config
from models import GradeScaleConfig


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (85.5 -> 86)"""
    return int(math.floor(value + 0.5))


def clamp(value, lower, upper):
    return max(lower, min(upper, value))


def aggregate_scores(scores: Iterable) -> Tuple[float, float]:
    """
    Weighted mean of activity scores.

    Args:
        scores: objects with ``score`` (0-100) and ``weight``

    Returns:
        tuple: (raw_score, total_weight); raw_score is 0 when total_weight is 0
    """
    total_weighted = 0.0
    total_weight = 0.0
    for item in scores:
        total_weighted += item.score * item.weight
        total_weight += item.weight

    if total_weight <= 0:
        return 0.0, 0.0
    return clamp(total_weighted / total_weight, 0.0, 100.0), total_weight


def convert_to_grade_label(score: float, scale_type: Optional[str], custom_config=None) -> str:
    """
    Convert a percentage (0-100) to a label on the classroom's scale.

    Args:
        score: Raw percentage
        scale_type: 'PERU_LETTERS', 'PERU_VIGESIMAL', 'USA_LETTERS',
            'CENTESIMAL', 'CUSTOM' or None
        custom_config: GradeScaleConfig (or raw stored value) for 'CUSTOM'

    Returns:
        str: never empty; the rounded percentage when no tiers apply
    """
    if scale_type == 'CUSTOM':
        if not isinstance(custom_config, GradeScaleConfig):
            custom_config = GradeScaleConfig.from_raw(custom_config)
        tiers = [(r.label, r.min_percent) for r in custom_config.ranges]
    else:
        tiers = [(t['label'], t['minPercent']) for t in Config.GRADE_SCALES.get(scale_type or '', [])]

    if not tiers:
        return str(round_half_up(score))

    tiers.sort(key=lambda tier: tier[1], reverse=True)
    for label, min_percent in tiers:
        if score >= min_percent:
            return label
    # Below every tier: lowest tier wins
    return tiers[-1][0]
