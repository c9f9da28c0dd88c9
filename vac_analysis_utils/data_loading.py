"""
Data loading and validation for the self-paced reading dataset
"""

import logging
from pathlib import Path
from typing import Union

import pandas as pd

import config
from vac_analysis_utils.errors import ColumnTypeError, ConstraintError, SchemaError

logger = logging.getLogger(__name__)

NUMERIC_COLUMNS = ["region", "EIT_score", "RT_raw"]
KEY_COLUMNS = ["subject", "item", "region"]


def apply_mapping(df: pd.DataFrame, mapping: dict) -> pd.DataFrame:
    """
    Rename raw columns to analysis names

    Args:
        df: Input DataFrame
        mapping: Raw column name -> analysis column name

    Returns:
        DataFrame with renamed columns
    """
    existing_mapping = {old: new for old, new in mapping.items() if old in df.columns}

    if existing_mapping:
        df = df.rename(columns=existing_mapping)

    return df


def load_spr_data(source: Union[str, Path, pd.DataFrame], cfg=None) -> pd.DataFrame:
    """
    Load the row-per-region-per-trial dataset and validate it

    Nothing is dropped or coerced: any invalid row fails the whole load.

    Args:
        source: CSV path or an already-read DataFrame
        cfg: Configuration module/object (defaults to config)

    Returns:
        Validated DataFrame with ``VAC.type`` renamed to ``VAC_type``

    Raises:
        SchemaError: a required column is missing
        ColumnTypeError: region, EIT_score or RT_raw is not numeric
        ConstraintError: missing values, RT_raw <= 0 or duplicate keys
    """
    cfg = cfg or config

    if isinstance(source, pd.DataFrame):
        data = source.copy()
        logger.info(f"Validating in-memory dataset ({len(data):,} rows)")
    else:
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"SPR data not found at {path}")
        data = pd.read_csv(path)
        logger.info(f"Loaded {len(data):,} rows from {path}")

    data = validate_spr_data(data, cfg)

    logger.info(
        f"Dataset: {data['subject'].nunique()} subjects, "
        f"{data['item'].nunique()} items, {data['region'].nunique()} regions"
    )
    return data


def validate_spr_data(data: pd.DataFrame, cfg=None) -> pd.DataFrame:
    """Check schema, column types and row constraints; return a renamed copy"""
    cfg = cfg or config

    required = list(cfg.REQUIRED_COLUMNS)
    missing = [col for col in required if col not in data.columns]
    if missing:
        raise SchemaError(f"Missing required columns: {missing}")

    data = apply_mapping(data[required].copy(), cfg.COLUMN_RENAMES)

    for col in NUMERIC_COLUMNS:
        if not pd.api.types.is_numeric_dtype(data[col]) or pd.api.types.is_bool_dtype(
            data[col]
        ):
            bad = data.loc[pd.to_numeric(data[col], errors="coerce").isna(), col]
            raise ColumnTypeError(
                f"Column '{col}' must be numeric; offending values: "
                f"{bad.astype(str).unique()[:5].tolist()}"
            )

    null_counts = data.isna().sum()
    if null_counts.any():
        raise ConstraintError(
            f"Missing values in columns: {null_counts[null_counts > 0].to_dict()}"
        )

    non_positive = data["RT_raw"] <= 0
    if non_positive.any():
        raise ConstraintError(
            f"{int(non_positive.sum())} rows with RT_raw <= 0 "
            f"(first at index {data.index[non_positive][0]})"
        )

    duplicated = data.duplicated(subset=KEY_COLUMNS, keep=False)
    if duplicated.any():
        examples = data.loc[duplicated, KEY_COLUMNS].drop_duplicates().head(3)
        raise ConstraintError(
            f"Duplicate (subject, item, region) keys: "
            f"{examples.to_dict('records')}"
        )

    return data.reset_index(drop=True)
