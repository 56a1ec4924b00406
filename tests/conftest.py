import pytest

from shift_config import BUCKET_LABELS
from shift_aggregator import build_shift_summary

# 1000 candidates, skewed slightly right, combined average 150
STANDARD_COUNTS = [10, 20, 55, 115, 175, 195, 150, 105, 65, 40, 65, 5]

# A large shift with a thin top end, combined average 120
LARGE_COUNTS = [1000, 2000, 5500, 11500, 17500, 19500, 15000, 10500, 6500, 4000, 600, 5]


def make_record(shift_id, counts, physics=50.0, chemistry=50.0, maths=50.0):
    return {
        "_id": shift_id,
        "avgProvisionalPhysicsMarks": physics,
        "avgProvisionalChemistryMarks": chemistry,
        "avgProvisionalMathematicsMarks": maths,
        "segments": {label: {"provisionalCount": c} for label, c in zip(BUCKET_LABELS, counts)},
    }


@pytest.fixture
def standard_record():
    return make_record("22 Jan S1", STANDARD_COUNTS)


@pytest.fixture
def standard_shift(standard_record):
    return build_shift_summary(standard_record)


@pytest.fixture
def large_shift():
    return build_shift_summary(make_record("28 Jan S2", LARGE_COUNTS, 40.0, 40.0, 40.0))
