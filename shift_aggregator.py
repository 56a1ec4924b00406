"""
Shift aggregation.
Turns raw per-shift records into sorted, filtered shift summaries and the
population-level figures derived from them.
"""

import re
from collections import namedtuple

from shift_config import MIN_SHIFT_SAMPLE, P99_SAMPLE_PCT, P98_SAMPLE_PCT
from shift_distribution import BucketedDistribution, round_half_up

ShiftSummary = namedtuple('ShiftSummary', [
    'id', 'count', 'avg', 'physics', 'chemistry', 'maths',
    'median', 'sd', 'skew', 'predicted99', 'predicted98', 'elite_ratio',
    'distribution',
])

# Selected shift, chart ordering and marker toggles for display collaborators
ViewState = namedtuple('ViewState', [
    'selected_shift_id', 'sort_mode', 'show_elite_line', 'show_p99_line', 'show_p98_line',
], defaults=[None, 'date', True, True, True])

SUBJECTS = ('physics', 'chemistry', 'maths')
SORT_MODES = ('date', 'mean')

_SUBJECT_FIELDS = {
    'physics': "avgProvisionalPhysicsMarks",
    'chemistry': "avgProvisionalChemistryMarks",
    'maths': "avgProvisionalMathematicsMarks",
}


def _number(value):
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def normalize_shift_id(raw_id):
    """Collapse whitespace runs in a shift id ("24 Jan  S1 " -> "24 Jan S1")"""
    return re.sub(r"\s+", " ", str(raw_id or "")).strip()


def build_shift_summary(record):
    """Compute the summary for one raw record, regardless of its sample size"""
    distribution = BucketedDistribution.from_segments(record.get("segments"))
    count = distribution.total

    averages = {subject: _number(record.get(field)) for subject, field in _SUBJECT_FIELDS.items()}
    stats = distribution.stats()
    elite_ratio = distribution.elite_count() / count * 100 if count > 0 else 0.0

    return ShiftSummary(
        id=normalize_shift_id(record.get("_id", record.get("id"))),
        count=int(count) if count.is_integer() else count,
        avg=round_half_up(sum(averages.values()), 1),
        physics=averages['physics'],
        chemistry=averages['chemistry'],
        maths=averages['maths'],
        median=distribution.median(),
        sd=round_half_up(stats['sd'], 2),
        skew=round_half_up(stats['skew'], 3),
        predicted99=distribution.score_for_top_percentage(P99_SAMPLE_PCT),
        predicted98=distribution.score_for_top_percentage(P98_SAMPLE_PCT),
        elite_ratio=round_half_up(elite_ratio, 2),
        distribution=distribution,
    )


def aggregate_shifts(raw_records):
    """
    Build shift summaries, drop shifts with 100 or fewer candidates and
    sort the rest by combined average, hardest shift first.
    """
    summaries = [build_shift_summary(record) for record in raw_records or []]
    retained = [s for s in summaries if s.count > MIN_SHIFT_SAMPLE]
    return sorted(retained, key=lambda s: s.avg)


def population_overview(summaries):
    """Totals across all retained shifts"""
    if not summaries:
        return {
            'total_students': 0,
            'global_median': 0.0,
            'global_top_ratio': 0.0,
            'hardest_shift': None,
        }

    total_students = sum(s.count for s in summaries)
    medians_sum = sum(s.median for s in summaries)
    top_students = sum(s.elite_ratio * s.count / 100 for s in summaries)

    return {
        'total_students': total_students,
        'global_median': round_half_up(medians_sum / len(summaries), 1),
        'global_top_ratio': round_half_up(top_students / total_students * 100, 2) if total_students else 0.0,
        'hardest_shift': summaries[0],
    }


def toughest_by_subject(summaries, subject, n=3):
    """The n shifts with the lowest average in one subject"""
    if subject not in SUBJECTS:
        raise ValueError(f"Unknown subject '{subject}', expected one of {', '.join(SUBJECTS)}")
    return sorted(summaries, key=lambda s: getattr(s, subject))[:n]


def chronological_key(shift_id):
    """
    Sort key for exam-date order: "<day/year>[-S]<session>" with whitespace
    removed, e.g. "2026 - S1" -> 20261. Ids without two digit groups sort first.
    """
    match = re.search(r"(\d+)[-S]*(\d+)", re.sub(r"\s+", "", shift_id), re.IGNORECASE)
    if match:
        return int(match.group(1)) * 10 + int(match.group(2))
    return 0


def ordered_for_display(summaries, view_state=None):
    """Shifts in chart order: by exam date or by combined average"""
    view_state = view_state or ViewState()
    if view_state.sort_mode == 'mean':
        return sorted(summaries, key=lambda s: s.avg)
    if view_state.sort_mode == 'date':
        return sorted(summaries, key=lambda s: chronological_key(s.id))
    raise ValueError(f"Unknown sort mode '{view_state.sort_mode}'")


def select_shift(summaries, shift_id):
    """Summary with the given id, or None"""
    shift_id = normalize_shift_id(shift_id)
    for summary in summaries:
        if summary.id == shift_id:
            return summary
    return None


def current_shift(summaries, view_state=None):
    """The shift picked in the view state, or the hardest shift when none is picked"""
    view_state = view_state or ViewState()
    if view_state.selected_shift_id:
        return select_shift(summaries, view_state.selected_shift_id)
    return summaries[0] if summaries else None
