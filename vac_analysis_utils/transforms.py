"""
Transform stage: log-transform, contrast coding and response tables

Every function returns a new DataFrame and leaves its input untouched.
"""

import logging
from typing import Dict, Iterable, Optional

import numpy as np
import pandas as pd

import config
from vac_analysis_utils.errors import (
    ContrastBalanceError,
    DomainError,
    EmptyResultError,
    UnknownLevelError,
)

logger = logging.getLogger(__name__)

TRIAL_KEYS = ["subject", "item"]
TRIAL_COLUMNS = ["subject", "item", "EIT_score", "VAC_type", "strength_code"]


def log_transform(table: pd.DataFrame) -> pd.DataFrame:
    """Add ``logRT = ln(RT_raw)``; raise DomainError for RT_raw <= 0"""
    rt = table["RT_raw"].astype(float)
    non_positive = ~(rt > 0)
    if non_positive.any():
        raise DomainError(
            f"log-transform undefined for {int(non_positive.sum())} rows with RT_raw <= 0"
        )

    out = table.copy()
    out["logRT"] = np.log(rt)
    return out


def code_contrast(
    table: pd.DataFrame,
    field: str,
    mapping: Dict[str, float],
    target: Optional[str] = None,
) -> pd.DataFrame:
    """
    Map a two-level label column onto numeric contrast codes

    Args:
        table: Input table
        field: Label column (e.g. ``verb_strength``)
        mapping: Label -> code, must be a bijection between two labels and two codes
        target: Output column; defaults to overwriting ``field``

    Returns:
        New table with the coded column

    Raises:
        UnknownLevelError: a label outside ``mapping`` is present
    """
    if len(mapping) != 2 or len(set(mapping.values())) != 2:
        raise ValueError(f"Contrast mapping must be a two-level bijection: {mapping}")

    labels = table[field].astype(str)
    unknown = sorted(set(labels.unique()) - set(mapping))
    if unknown:
        raise UnknownLevelError(
            f"Unknown levels in '{field}': {unknown} (expected {sorted(mapping)})"
        )

    out = table.copy()
    out[target or field] = labels.map(mapping).astype(float)
    return out


def check_contrast_balance(
    table: pd.DataFrame,
    field: str = "strength_code",
    tol: Optional[float] = None,
    strict: Optional[bool] = None,
) -> float:
    """
    Check that contrast codes sum to zero across conditions

    An unbalanced centred contrast shifts the meaning of the intercept, so
    the imbalance is reported (or raised when strict).

    Returns:
        Mean contrast code
    """
    tol = config.CONTRAST_BALANCE_TOL if tol is None else tol
    strict = config.STRICT_CONTRAST_BALANCE if strict is None else strict

    mean_code = float(table[field].mean())
    if abs(mean_code) > tol:
        message = f"Contrast '{field}' is unbalanced: mean code = {mean_code:.3f}"
        if strict:
            raise ContrastBalanceError(message)
        logger.warning(message)
    else:
        logger.info(f"Contrast '{field}' balanced (mean code = {mean_code:.3f})")

    return mean_code


def prepare_observations(raw: pd.DataFrame, cfg=None) -> pd.DataFrame:
    """Shared pre-pipeline stage: logRT, strength_code and balance check"""
    cfg = cfg or config

    logger.info("=" * 60)
    logger.info("DATA PREPARATION")
    logger.info("=" * 60)

    prepared = log_transform(raw)
    prepared = code_contrast(
        prepared, "verb_strength", cfg.STRENGTH_CODES, target="strength_code"
    )
    check_contrast_balance(
        prepared,
        "strength_code",
        tol=cfg.CONTRAST_BALANCE_TOL,
        strict=cfg.STRICT_CONTRAST_BALANCE,
    )

    logger.info(
        f"Prepared {len(prepared):,} observations "
        f"(mean logRT = {prepared['logRT'].mean():.3f})"
    )
    return prepared


def _trial_attributes(table: pd.DataFrame) -> pd.DataFrame:
    # Trial-level predictors are constant within (subject, item)
    return table[TRIAL_COLUMNS].drop_duplicates(subset=TRIAL_KEYS)


def _sum_by_trial(table: pd.DataFrame, value_name: str) -> pd.DataFrame:
    sums = (
        table.groupby(TRIAL_KEYS, sort=True)["logRT"]
        .sum()
        .rename(value_name)
        .reset_index()
    )
    out = sums.merge(_trial_attributes(table), on=TRIAL_KEYS, how="left")
    return out[TRIAL_COLUMNS + [value_name]].reset_index(drop=True)


def aggregate_whole(table: pd.DataFrame, n_regions: Optional[int] = None) -> pd.DataFrame:
    """
    Whole-sentence table: ``logRT_whole`` summed over every region of a trial

    Trials with fewer regions than expected are still summed; their count
    is logged.
    """
    n_regions = n_regions or config.N_REGIONS

    counts = table.groupby(TRIAL_KEYS)["region"].nunique()
    partial = int((counts < n_regions).sum())
    if partial:
        logger.warning(
            f"{partial} trials have fewer than {n_regions} regions; summed as-is"
        )

    return _sum_by_trial(table, "logRT_whole")


def select_region(table: pd.DataFrame, region_id: int) -> pd.DataFrame:
    """Critical-region table: rows of one region only"""
    selected = table[table["region"] == region_id]
    if selected.empty:
        raise EmptyResultError(f"No rows for region {region_id}")

    columns = TRIAL_COLUMNS + ["region", "logRT"]
    return selected[columns].sort_values(TRIAL_KEYS).reset_index(drop=True)


def aggregate_regions(table: pd.DataFrame, region_set: Iterable[int]) -> pd.DataFrame:
    """Construction table: ``VAC_RT`` summed over a set of regions"""
    region_set = sorted(set(region_set))
    selected = table[table["region"].isin(region_set)]
    if selected.empty:
        raise EmptyResultError(f"No rows for regions {region_set}")

    return _sum_by_trial(selected, "VAC_RT")
