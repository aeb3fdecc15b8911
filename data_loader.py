"""
Data Loader - Poll Tables and Electoral Maps

Turns already-cleaned tabular inputs into the engine's domain types.
Collection and cleaning of raw poll tables happen upstream; this module
only checks column presence, types and value ranges.

Poll table columns:
    region, pollster, end_date, share_a, share_b, sample_size, grade (optional)

Electoral map:
    CSV with region, weight columns, or a JSON object {region: weight}
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import pandas as pd

from config.forecast_config import ConfigurationError, ElectoralMap
from models.poll_aggregator import PollRecord

logger = logging.getLogger(__name__)

REQUIRED_POLL_COLUMNS = ['region', 'pollster', 'end_date', 'share_a', 'share_b', 'sample_size']


# =============================================================================
# POLLS
# =============================================================================

def load_poll_frame(source: Union[str, Path, pd.DataFrame],
                    column_map: Optional[Dict[str, str]] = None,
                    shares_in_percent: bool = False) -> pd.DataFrame:
    """
    Load and type-check a poll table.

    Args:
        source: CSV path or an existing DataFrame
        column_map: Renames source columns to the expected names,
                    e.g. {'state': 'region', 'rawpoll_clinton': 'share_a'}
        shares_in_percent: Shares are 0-100 and are divided by 100

    Returns:
        DataFrame with the required columns, end_date parsed to dates
    """
    if isinstance(source, pd.DataFrame):
        df = source.copy()
    else:
        path = Path(source)
        if not path.exists():
            raise ConfigurationError(f"Poll file not found: {path}")
        logger.info(f"Loading polls from {path}")
        df = pd.read_csv(path)

    if column_map:
        df = df.rename(columns=column_map)

    missing = [c for c in REQUIRED_POLL_COLUMNS if c not in df.columns]
    if missing:
        raise ConfigurationError(f"Poll table is missing columns: {', '.join(missing)}")

    if 'grade' not in df.columns:
        df['grade'] = None

    df = df[REQUIRED_POLL_COLUMNS + ['grade']].copy()

    if df[REQUIRED_POLL_COLUMNS].isna().any().any():
        bad = df[df[REQUIRED_POLL_COLUMNS].isna().any(axis=1)]
        raise ConfigurationError(f"{len(bad)} poll rows have missing required values")

    try:
        df['end_date'] = pd.to_datetime(df['end_date']).dt.date
        df['share_a'] = df['share_a'].astype(float)
        df['share_b'] = df['share_b'].astype(float)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Poll table has malformed values: {e}") from e

    if shares_in_percent:
        df['share_a'] = df['share_a'] / 100
        df['share_b'] = df['share_b'] / 100

    df['region'] = df['region'].astype(str)
    df['pollster'] = df['pollster'].astype(str)
    df['grade'] = df['grade'].astype(object).where(df['grade'].notna(), None)

    return df


def records_from_frame(df: pd.DataFrame) -> List[PollRecord]:
    """Convert a checked poll DataFrame to PollRecords."""
    records = []
    for row in df.itertuples(index=False):
        sample_size = row.sample_size
        try:
            is_integer = float(sample_size) == int(sample_size)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"sample_size must be an integer, got {sample_size!r} ({row.pollster}, {row.region})"
            ) from e
        if not is_integer:
            raise ConfigurationError(
                f"sample_size must be an integer, got {sample_size} ({row.pollster}, {row.region})"
            )
        records.append(PollRecord(
            region=row.region,
            pollster=row.pollster,
            end_date=row.end_date,
            share_a=float(row.share_a),
            share_b=float(row.share_b),
            sample_size=int(sample_size),
            grade=row.grade if row.grade is None else str(row.grade),
        ))
    return records


def load_poll_records(source: Union[str, Path, pd.DataFrame],
                      column_map: Optional[Dict[str, str]] = None,
                      shares_in_percent: bool = False) -> List[PollRecord]:
    """Load poll records from a CSV file or DataFrame."""
    df = load_poll_frame(source, column_map=column_map, shares_in_percent=shares_in_percent)
    records = records_from_frame(df)
    logger.info(f"Loaded {len(records)} poll records across {df['region'].nunique()} regions")
    return records


# =============================================================================
# ELECTORAL MAP
# =============================================================================

def load_electoral_map(source: Union[str, Path], expected_total: Optional[int] = None) -> ElectoralMap:
    """
    Load region weights from CSV (region, weight) or JSON ({region: weight}).
    """
    path = Path(source)
    if not path.exists():
        raise ConfigurationError(f"Electoral map not found: {path}")

    if path.suffix.lower() == '.json':
        with open(path, 'r') as f:
            try:
                weights = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Malformed electoral map {path}: {e}") from e
        if not isinstance(weights, dict):
            raise ConfigurationError(f"Electoral map JSON must be an object: {path}")
    else:
        df = pd.read_csv(path)
        if not {'region', 'weight'}.issubset(df.columns):
            raise ConfigurationError(f"Electoral map CSV needs region and weight columns: {path}")
        if df['region'].duplicated().any():
            dupes = sorted(df.loc[df['region'].duplicated(), 'region'].astype(str).unique())
            raise ConfigurationError(f"Duplicate regions in electoral map: {', '.join(dupes)}")
        weights = dict(zip(df['region'].astype(str), df['weight'].tolist()))

    electoral_map = ElectoralMap(weights, expected_total=expected_total)
    logger.info(f"Loaded electoral map with {len(electoral_map)} regions ({electoral_map.total_weight} total)")
    return electoral_map
