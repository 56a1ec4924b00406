"""
Marks-to-percentile predictor.

A raw score is first ranked inside the selected shift's own sample with the
localized exponential decay model, then the sample percentage above it is
remapped onto an exam-wide top percentage:

    sample top 6.5%     -> dual-curve blend down to the 99th percentile
    sample 6.5..11.75%  -> linear 99th -> 98th percentile
    beyond              -> anchors from the shift's biased statistics
                           (98th -> 90th exponential bridge, 90th -> 80th
                           buffer, quadratic tail below)
"""

import math

from shift_config import (
    BUCKET_WIDTH, MAX_SCORE, P99_SAMPLE_PCT, P98_SAMPLE_PCT,
    ELITE_BASE_EXP, ELITE_EXP_AVG_DIVISOR,
    ULTRA_ANCHOR, ULTRA_DAMPING_BASE, ULTRA_DAMPING_AVG_DIVISOR, ULTRA_DAMPING_FLOOR,
    BLEND_LOWER, BLEND_UPPER,
    P90_SD_OFFSET, BUFFER_SD_WIDTH,
    TOP_PCT_AT_P99, TOP_PCT_AT_P98, TOP_PCT_AT_P90, TOP_PCT_AT_CLIFF, TAIL_SPAN,
    NEAR_PERFECT_SCORE, PERCENTILE_CEILING, PLACEHOLDER, TOP_OF_SCALE,
)
from shift_distribution import InvalidDistribution, decay_model, bucket_index


def sample_percentage_above(score, distribution):
    """Estimated percentage of the shift sample scoring above score"""
    idx = bucket_index(score)
    score_high = (idx + 1) * BUCKET_WIDTH

    total_above = distribution.count_above(idx)
    count_in_bucket = distribution.counts[idx]

    r_top, k = decay_model(total_above, count_in_bucket)
    rank_within = r_top * math.exp(k * (score_high - score))

    return rank_within / distribution.total * 100


def _elite_blend(sample_pct, avg):
    """Top-exam percentage inside the sample's top 6.5%"""
    rel_pos = sample_pct / P99_SAMPLE_PCT

    # Harder shifts (lower avg) get a flatter curve
    base_exp = ELITE_BASE_EXP + avg / ELITE_EXP_AVG_DIVISOR
    ultra_damping = max(ULTRA_DAMPING_FLOOR, ULTRA_DAMPING_BASE - avg / ULTRA_DAMPING_AVG_DIVISOR)

    elite_val = rel_pos ** base_exp

    boundary_val = ULTRA_ANCHOR ** base_exp
    ultra_val = boundary_val * (rel_pos / ULTRA_ANCHOR) ** ultra_damping

    if rel_pos > BLEND_UPPER:
        return elite_val
    if rel_pos < BLEND_LOWER:
        return ultra_val

    weight = (rel_pos - BLEND_LOWER) / (BLEND_UPPER - BLEND_LOWER)
    return elite_val * weight + ultra_val * (1 - weight)


def _population_zones(score, shift):
    """Top-exam percentage for scores below the sample's 98th percentile marker"""
    biased = shift.distribution.biased_stats()
    p90_anchor = biased['mean'] + P90_SD_OFFSET * biased['sd']
    p98_score = shift.predicted98
    cliff_edge = p90_anchor - BUFFER_SD_WIDTH * biased['sd']

    if score >= p90_anchor:
        # Exponential bridge, 2% at the 98th marker to 10% at the 90th anchor
        k_bridge = math.log(TOP_PCT_AT_P90 / TOP_PCT_AT_P98) / max(1, p98_score - p90_anchor)
        return TOP_PCT_AT_P98 * math.exp(k_bridge * (p98_score - score))

    if score >= cliff_edge:
        # 90th -> 80th percentile over half a biased sd
        t = (p90_anchor - score) / max(1, p90_anchor - cliff_edge)
        return TOP_PCT_AT_P90 + t * (TOP_PCT_AT_CLIFF - TOP_PCT_AT_P90)

    # 0 at the cliff edge, 1 at score 0; squared for a slow start and steep finish
    t = (cliff_edge - score) / max(1, cliff_edge)
    return TOP_PCT_AT_CLIFF + TAIL_SPAN * t ** 2


def top_exam_percentage(score, shift):
    """
    Estimated percentage of all exam candidates scoring at or above score.

    Does no input validation. Raises InvalidDistribution when the shift has
    no candidates below 200 and the score falls in the population zones.
    """
    sample_pct = sample_percentage_above(score, shift.distribution)

    if sample_pct <= P99_SAMPLE_PCT:
        return _elite_blend(sample_pct, shift.avg)

    if sample_pct <= P98_SAMPLE_PCT:
        t = (sample_pct - P99_SAMPLE_PCT) / (P98_SAMPLE_PCT - P99_SAMPLE_PCT)
        return TOP_PCT_AT_P99 + t * (TOP_PCT_AT_P98 - TOP_PCT_AT_P99)

    return _population_zones(score, shift)


def format_percentile(score, percentile):
    """Display string for a percentile; near-perfect scores are pinned to the top of the scale"""
    if score < NEAR_PERFECT_SCORE:
        if percentile >= PERCENTILE_CEILING:
            return TOP_OF_SCALE
        return f"{percentile:.2f}%"

    percentile = max(PERCENTILE_CEILING, min(100.0, percentile))
    return f"{percentile:.2f}%"


def _valid_score(score):
    """Score as a float in [0, 300], or None when it cannot be used"""
    if isinstance(score, bool):
        return None
    try:
        score = float(score)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(score) or score < 0 or score > MAX_SCORE:
        return None
    return score


def predict_percentile(score, shift):
    """
    Predict the exam percentile for a raw score in the selected shift.

    Args:
        score: raw marks, 0-300 (numeric strings are accepted)
        shift: the selected ShiftSummary, or None

    Returns:
        "XX.XX%", "99.99+" or the "---" placeholder for unusable input
    """
    score = _valid_score(score)
    if score is None or shift is None or shift.count <= 0:
        return PLACEHOLDER

    try:
        percentile = 100 - top_exam_percentage(score, shift)
    except InvalidDistribution:
        return PLACEHOLDER

    return format_percentile(score, percentile)
