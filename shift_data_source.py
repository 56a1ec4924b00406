"""
Data source for shift analytics.
Fetches per-shift aggregates from the marks-calculator API (one call, no
retries), loads them from local files, and coordinates refreshes so that a
late response never overwrites a newer one.
"""

import itertools
import json
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor

import pandas as pd
import requests

from shift_config import BUCKET_LABELS, load_settings
from shift_aggregator import aggregate_shifts

logger = logging.getLogger(__name__)

SUBJECT_COLUMNS = [
    "avgProvisionalPhysicsMarks",
    "avgProvisionalChemistryMarks",
    "avgProvisionalMathematicsMarks",
]


class DataSourceError(RuntimeError):
    """The shift data could not be fetched or read"""


def _records_from_response(payload):
    """Pull the comparativeScores list out of an API response body"""
    if not isinstance(payload, dict) or not payload.get("success"):
        raise DataSourceError("API responded with success:false")
    try:
        records = payload["data"]["comparativeScores"]
    except (KeyError, TypeError):
        raise DataSourceError("API response has no data.comparativeScores")
    if not isinstance(records, list):
        raise DataSourceError("data.comparativeScores is not a list")
    return records


def fetch_comparative_scores(settings=None, session=None):
    """
    Fetch raw per-shift records from the API.

    Args:
        settings: dict from shift_config.load_settings(); read from the environment if None
        session: optional requests.Session

    Returns:
        list of raw shift records
    """
    settings = settings or load_settings()
    http = session or requests

    headers = {"Content-Type": "application/json"}
    if settings.get('api_token'):
        headers["Authorization"] = f"Bearer {settings['api_token']}"
    body = {"userResponseKeyUrl": settings.get('response_key_url', "")}

    try:
        response = http.post(settings['api_url'], json=body, headers=headers,
                             timeout=settings.get('timeout', 30))
        response.raise_for_status()
        payload = response.json()
    except requests.RequestException as e:
        raise DataSourceError(f"Shift data request failed: {e}") from e
    except ValueError as e:
        raise DataSourceError(f"Shift data response is not JSON: {e}") from e

    records = _records_from_response(payload)
    logger.info(f"Fetched {len(records)} shift records from {settings['api_url']}")
    return records


def _records_from_frame(df):
    """One record per CSV row: id, subject averages and one column per bucket label"""
    missing = [col for col in ["id"] + BUCKET_LABELS if col not in df.columns]
    if "id" in missing:
        raise DataSourceError("CSV file needs an 'id' column")
    if missing:
        logger.warning(f"CSV file is missing bucket columns {missing}; treating them as 0")

    records = []
    for _, row in df.iterrows():
        segments = {
            label: {"provisionalCount": row[label]}
            for label in BUCKET_LABELS if label in df.columns and pd.notna(row[label])
        }
        record = {"id": row["id"], "segments": segments}
        for col in SUBJECT_COLUMNS:
            if col in df.columns and pd.notna(row[col]):
                record[col] = float(row[col])
        records.append(record)
    return records


def load_records(path):
    """Load raw shift records from a JSON (records or full API response) or CSV file"""
    if not os.path.exists(path):
        raise DataSourceError(f"No such file: {path}")

    try:
        if path.endswith('.json'):
            with open(path, encoding='utf-8') as f:
                payload = json.load(f)
            records = payload if isinstance(payload, list) else _records_from_response(payload)
        elif path.endswith('.csv'):
            records = _records_from_frame(pd.read_csv(path))
        else:
            raise DataSourceError(f"Unsupported file type: {path} (expected .json or .csv)")
    except (OSError, ValueError) as e:
        raise DataSourceError(f"Error loading {path}: {e}") from e

    logger.info(f"Loaded {len(records)} shift records from {path}")
    return records


def summaries_to_frame(summaries):
    """Tabulate shift summaries, one row per shift, bucket counts as trailing columns"""
    rows = []
    for rank, s in enumerate(summaries, start=1):
        row = {
            'Rank': rank,
            'Shift': s.id,
            'Students': s.count,
            'Mean': s.avg,
            'Median': s.median,
            'SD': s.sd,
            'Skew': s.skew,
            'P99 Score': s.predicted99,
            'P98 Score': s.predicted98,
            'Elite %': s.elite_ratio,
            'Physics': s.physics,
            'Chemistry': s.chemistry,
            'Maths': s.maths,
        }
        for label, count in zip(BUCKET_LABELS, s.distribution.counts):
            row[label] = count
        rows.append(row)
    return pd.DataFrame(rows)


class RefreshCoordinator:
    """
    Hands out a monotonic token per refresh and applies only the result of
    the most recently issued one. Readers always see a complete list.
    """

    def __init__(self, summaries=None):
        self._lock = threading.Lock()
        self._tokens = itertools.count(1)
        self._issued = 0
        self._applied = 0
        self._summaries = list(summaries or [])

    def begin(self):
        """Issue the token for a new refresh"""
        with self._lock:
            self._issued = next(self._tokens)
            return self._issued

    def complete(self, token, summaries):
        """Apply a refresh result; stale tokens are discarded and return False"""
        with self._lock:
            if token != self._issued or token <= self._applied:
                logger.info(f"Discarding stale refresh {token} (latest issued {self._issued})")
                return False
            self._summaries = list(summaries)
            self._applied = token
            return True

    def snapshot(self):
        """The current shift summaries"""
        with self._lock:
            return self._summaries

    @property
    def applied_token(self):
        with self._lock:
            return self._applied


class ShiftDataSession:
    """Keeps the latest shift summaries and refreshes them in the background"""

    def __init__(self, fetch=None, settings=None, max_workers=2):
        self.settings = settings or load_settings()
        self._fetch = fetch or (lambda: fetch_comparative_scores(self.settings))
        self.coordinator = RefreshCoordinator()
        self._executor = ThreadPoolExecutor(max_workers=max_workers)

    def _run_refresh(self, token):
        records = self._fetch()
        summaries = aggregate_shifts(records)
        applied = self.coordinator.complete(token, summaries)
        if applied:
            logger.info(f"Refresh {token} applied: {len(summaries)} shifts retained of {len(records)}")
        return applied

    def refresh(self):
        """Fetch and apply synchronously; returns True if the result was applied"""
        return self._run_refresh(self.coordinator.begin())

    def refresh_async(self):
        """Start a refresh in the background; prediction keeps using the current snapshot"""
        return self._executor.submit(self._run_refresh, self.coordinator.begin())

    @property
    def summaries(self):
        return self.coordinator.snapshot()

    def close(self):
        self._executor.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
