"""
Bucketed score distributions for a single exam shift.
Counts of candidates in fixed 25-mark buckets over [0, 300), with the
moment statistics, interpolated median and inverse-percentile solver
used by the shift analytics.
"""

import math
from decimal import Decimal, ROUND_HALF_UP

import numpy as np

from shift_config import (
    BUCKET_LABELS, BUCKET_WIDTH, N_BUCKETS, ELITE_START_INDEX,
    MIN_SOLVER_SAMPLE, DECAY_EPSILON, BIASED_BUCKETS, LOWEST_BUCKET_BIAS,
)


class InvalidDistribution(ValueError):
    """Raised when a distribution has no weight to compute a statistic from"""


def _as_count(value):
    """Coerce a raw count to a non-negative float; anything unusable is 0"""
    try:
        count = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(count) or count < 0:
        return 0.0
    return count


def decay_model(rank_above, count_in_bucket):
    """
    Localized exponential decay of rank inside one bucket.

    The number of candidates above a score grows from r_top at the bucket's
    upper edge to r_bottom at its lower edge:
        rank(d) = r_top * exp(k * d),  k = ln(r_bottom / r_top) / 25
    where d is the distance below the upper edge.

    Returns (r_top, k).
    """
    r_top = max(DECAY_EPSILON, rank_above)
    r_bottom = r_top + max(DECAY_EPSILON, count_in_bucket)
    k = math.log(r_bottom / r_top) / BUCKET_WIDTH
    return r_top, k


def round_half_up(value, digits):
    """
    Round to a fixed number of decimals with ties going up, as the published
    score tables do. Works on the exact binary value, so 2.675 -> 2.67.
    """
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(float(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def bucket_index(score):
    """Index of the bucket holding score; 300 falls in the last bucket"""
    return min(int(math.floor(score / BUCKET_WIDTH)), N_BUCKETS - 1)


class BucketedDistribution:
    """
    Candidate counts per 25-mark bucket for one shift.
    Bucket i covers [25*i, 25*(i+1)) and is weighted at its midpoint.
    """

    def __init__(self, counts):
        counts = [_as_count(c) for c in counts]
        if len(counts) != N_BUCKETS:
            raise ValueError(f"Expected {N_BUCKETS} bucket counts, got {len(counts)}")

        self.counts = np.array(counts, dtype=float)
        self.counts.setflags(write=False)
        self.midpoints = np.arange(N_BUCKETS) * BUCKET_WIDTH + BUCKET_WIDTH / 2.0
        self.total = float(self.counts.sum())

    @classmethod
    def from_segments(cls, segments):
        """Build from the wire format {label: {"provisionalCount": n}}; missing labels count 0"""
        segments = segments or {}
        counts = []
        for label in BUCKET_LABELS:
            segment = segments.get(label)
            counts.append(segment.get("provisionalCount") if isinstance(segment, dict) else 0)
        return cls(counts)

    def __repr__(self):
        return f"BucketedDistribution({[int(c) if c.is_integer() else c for c in self.counts]})"

    def __eq__(self, other):
        if not isinstance(other, BucketedDistribution):
            return NotImplemented
        return bool(np.array_equal(self.counts, other.counts))

    def __hash__(self):
        return hash(tuple(self.counts))

    def count_above(self, idx):
        """Candidates in buckets strictly higher than idx"""
        return float(self.counts[idx + 1:].sum())

    def elite_count(self):
        """Candidates scoring 150 or more"""
        return float(self.counts[ELITE_START_INDEX:].sum())

    # ---------- Moments ----------
    def stats(self):
        """Mean, standard deviation and skewness with counts placed at bucket midpoints"""
        if self.total == 0:
            return {'mean': 0.0, 'sd': 0.0, 'skew': 0.0}

        mean = float(np.dot(self.counts, self.midpoints) / self.total)
        deviation = self.midpoints - mean
        variance = float(np.dot(self.counts, deviation ** 2) / self.total)
        third_moment = float(np.dot(self.counts, deviation ** 3) / self.total)

        sd = math.sqrt(variance)
        skew = third_moment / sd ** 3 if sd > 0 else 0.0

        return {'mean': mean, 'sd': sd, 'skew': skew}

    def biased_stats(self):
        """
        Mean and standard deviation over the 0-200 buckets only, with the
        lowest bucket amplified to correct for under-registration of the
        weakest candidates in raw feeds.
        Only used as an anchor by the percentile predictor.
        """
        weights = np.array(self.counts[:BIASED_BUCKETS], dtype=float)
        weights[0] *= LOWEST_BUCKET_BIAS
        midpoints = self.midpoints[:BIASED_BUCKETS]

        total = float(weights.sum())
        if total <= 0:
            raise InvalidDistribution("No candidates below 200 marks to compute biased statistics")

        mean = float(np.dot(weights, midpoints) / total)
        variance = float(np.dot(weights, (midpoints - mean) ** 2) / total)

        return {'mean': mean, 'sd': math.sqrt(variance)}

    # ---------- Median ----------
    def median(self):
        """Median score, linearly interpolated inside the bucket holding the middle rank"""
        if self.total == 0:
            return 0.0

        mid_rank = self.total / 2
        running = 0.0
        for i, count in enumerate(self.counts):
            if running + count >= mid_rank:
                fraction = (mid_rank - running) / count
                return round_half_up(i * BUCKET_WIDTH + fraction * BUCKET_WIDTH, 2)
            running += count
        return 0.0

    # ---------- Inverse percentile ----------
    def score_for_top_percentage(self, target_pct):
        """
        Score needed to be in the top target_pct percent of this shift.

        Walks buckets from the top, finds the one holding the target rank and
        inverts the decay model inside it. Returns 0 when the sample is too
        small to trust (fewer than 50 candidates).
        """
        if self.total < MIN_SOLVER_SAMPLE:
            return 0.0

        target_rank = self.total * (target_pct / 100)
        rank_above = 0.0
        target_idx = -1

        for i in range(N_BUCKETS - 1, -1, -1):
            rank_bottom = rank_above + self.counts[i]
            if rank_above <= target_rank <= rank_bottom:
                target_idx = i
                break
            rank_above = rank_bottom

        if target_idx == -1:
            return 0.0

        score_high = (target_idx + 1) * BUCKET_WIDTH
        r_top, k = decay_model(rank_above, self.counts[target_idx])

        if target_rank <= 0:
            distance_to_top = -math.inf
        else:
            distance_to_top = math.log(target_rank / r_top) / k

        # Clamp to the bucket's own span
        score = max(score_high - BUCKET_WIDTH, min(score_high, score_high - distance_to_top))
        return round_half_up(score, 1)
