"""
Shift analytics configuration.
Bucket layout, calibration constants for the percentile predictor and the
data-source settings read from the environment.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# ============================================================
# Bucket layout
# ============================================================

BUCKET_WIDTH = 25
MAX_SCORE = 300
BUCKET_LABELS = [
    "0-25", "25-50", "50-75", "75-100", "100-125", "125-150",
    "150-175", "175-200", "200-225", "225-250", "250-275", "275-300",
]
N_BUCKETS = len(BUCKET_LABELS)

# Buckets 6..11 (score >= 150) count towards the elite ratio
ELITE_START_INDEX = 6

# ============================================================
# Sample size thresholds
# ============================================================

# Below this the inverse solver returns 0 ("no reliable prediction")
MIN_SOLVER_SAMPLE = 50
# Shifts with this many candidates or fewer are dropped by the aggregator
MIN_SHIFT_SAMPLE = 100

# ============================================================
# Calibration constants
# Keep these in sync with the population-wide reference model; the
# predictor is validated against its outputs.
# ============================================================

# Top 6.5% of a shift sample ~ top 1% of the exam (99th percentile marker)
P99_SAMPLE_PCT = 6.5
# Top 11.75% of a shift sample ~ top 2% of the exam (98th percentile marker)
P98_SAMPLE_PCT = 11.75

# Floor on ranks/counts inside the decay model, avoids log(0)
DECAY_EPSILON = 0.5

# Elite curve exponent: ELITE_BASE_EXP + avg / ELITE_EXP_AVG_DIVISOR
ELITE_BASE_EXP = 1.25
ELITE_EXP_AVG_DIVISOR = 1200.0

# Ultra-elite curve, anchored at relative position ULTRA_ANCHOR
ULTRA_ANCHOR = 0.4
ULTRA_DAMPING_BASE = 1.25
ULTRA_DAMPING_AVG_DIVISOR = 280.0
ULTRA_DAMPING_FLOOR = 0.75

# Blend window between the ultra-elite and elite curves
BLEND_LOWER = 0.35
BLEND_UPPER = 0.65

# Biased statistics: first 8 buckets (0-200), lowest bucket amplified
BIASED_BUCKETS = 8
LOWEST_BUCKET_BIAS = 2.5

# 90th percentile anchor = biased mean + P90_SD_OFFSET * biased sd
P90_SD_OFFSET = 0.38
# Width of the 90th -> 80th percentile buffer, in biased sds
BUFFER_SD_WIDTH = 0.5

# Top-exam-percentage at each anchor
TOP_PCT_AT_P99 = 1.0
TOP_PCT_AT_P98 = 2.0
TOP_PCT_AT_P90 = 10.0
TOP_PCT_AT_CLIFF = 20.0
# Extra top-exam-percentage added across the quadratic tail (20 -> 95)
TAIL_SPAN = 75.0

# Scores at or above this always read as top of scale
NEAR_PERFECT_SCORE = 290
PERCENTILE_CEILING = 99.99

PLACEHOLDER = "---"
TOP_OF_SCALE = "99.99+"

# ============================================================
# Data source
# ============================================================

DEFAULT_API_URL = "https://api.jee-marks-calculator.mathongo.com/score"
DEFAULT_TIMEOUT = 30
# Seconds between background refreshes (15 minutes)
DEFAULT_REFRESH_INTERVAL = 900


def load_settings():
    """Read data-source settings from the environment (and .env)"""
    return {
        'api_url': os.getenv("JEE_SHIFT_API_URL", DEFAULT_API_URL),
        'api_token': os.getenv("JEE_SHIFT_API_TOKEN", ""),
        'response_key_url': os.getenv("JEE_SHIFT_RESPONSE_KEY_URL", ""),
        'timeout': float(os.getenv("JEE_SHIFT_TIMEOUT", DEFAULT_TIMEOUT)),
        'refresh_interval': float(os.getenv("JEE_SHIFT_REFRESH_INTERVAL", DEFAULT_REFRESH_INTERVAL)),
    }
