"""
Descriptive statistics for the SPR dataset

Tables only; printing and plotting are left to the caller.
"""

import logging
from typing import Dict, Optional

import numpy as np
import pandas as pd
from scipy import stats

import config

logger = logging.getLogger(__name__)

Z_95 = 1.96


def describe_condition(
    data: pd.DataFrame, strength_code: float, region: Optional[int] = None, cfg=None
) -> Dict[str, float]:
    """
    Raw-RT summary for one strength condition at one region

    Args:
        data: Prepared observations (with ``strength_code``)
        strength_code: -0.5 (weak) or 0.5 (strong); compared numerically
        region: Region of interest (defaults to DESCRIPTIVE_REGION)
        cfg: Configuration module/object (defaults to config)

    Returns:
        Dictionary with n, mean, sd, quartiles and 95% CI half-width
    """
    cfg = cfg or config
    region = cfg.DESCRIPTIVE_REGION if region is None else region
    subset = data[np.isclose(data["strength_code"], strength_code) & (data["region"] == region)]
    rt = subset["RT_raw"].astype(float)

    n = len(rt)
    if n == 0:
        logger.warning(f"No rows for strength_code={strength_code} at region {region}")
        return {"n": 0, "region": region, "strength_code": strength_code}

    sd = float(rt.std()) if n > 1 else np.nan
    return {
        "n": n,
        "region": region,
        "strength_code": strength_code,
        "mean": float(rt.mean()),
        "sd": sd,
        "min": float(rt.min()),
        "q1": float(rt.quantile(0.25)),
        "median": float(rt.median()),
        "q3": float(rt.quantile(0.75)),
        "max": float(rt.max()),
        "ci95": Z_95 * sd / np.sqrt(n) if n > 1 else np.nan,
    }


def describe_conditions(
    data: pd.DataFrame, region: Optional[int] = None, cfg=None
) -> pd.DataFrame:
    """Raw-RT summaries for both strength conditions"""
    cfg = cfg or config
    rows = []
    for label, code in cfg.STRENGTH_CODES.items():
        row = describe_condition(data, code, region, cfg)
        row["verb_strength"] = label
        rows.append(row)
    return pd.DataFrame(rows).set_index("verb_strength")


def normality_check(data: pd.DataFrame) -> Dict[str, Dict[str, float]]:
    """Shapiro-Wilk on raw and log reading times"""
    results = {}
    for col in ["RT_raw", "logRT"]:
        if col not in data.columns:
            continue
        values = data[col].dropna().to_numpy(dtype=float)
        if len(values) < 3:
            continue
        # scipy's p-value is approximate above 5000 observations
        stat, p = stats.shapiro(values)
        results[col] = {
            "W": float(stat),
            "p_value": float(p),
            "skewness": float(stats.skew(values)),
        }
        logger.info(f"  Shapiro-Wilk {col}: W={stat:.4f}, p={p:.4g}")
    return results


def region_profile(data: pd.DataFrame) -> pd.DataFrame:
    """Mean logRT and 95% CI per region and construction type"""
    grouped = data.groupby(["region", "VAC_type"])["logRT"]
    profile = grouped.agg(["mean", "std", "count"]).rename(
        columns={"mean": "logRT_mean", "std": "logRT_sd", "count": "n"}
    )
    profile["logRT_ci"] = Z_95 * profile["logRT_sd"] / np.sqrt(profile["n"])
    return profile.reset_index()


def proficiency_correlations(data: pd.DataFrame, cfg=None) -> pd.DataFrame:
    """Pearson r between EIT score and logRT within each strength condition"""
    cfg = cfg or config
    rows = []
    for label, code in cfg.STRENGTH_CODES.items():
        subset = data[np.isclose(data["strength_code"], code)]
        if len(subset) < 3 or subset["EIT_score"].nunique() < 2:
            rows.append({"verb_strength": label, "n": len(subset), "r": np.nan, "p_value": np.nan})
            continue
        r, p = stats.pearsonr(subset["EIT_score"], subset["logRT"])
        rows.append({"verb_strength": label, "n": len(subset), "r": float(r), "p_value": float(p)})
    return pd.DataFrame(rows).set_index("verb_strength")


def run_descriptives(data: pd.DataFrame, region: Optional[int] = None, cfg=None) -> dict:
    """All descriptive tables for a prepared dataset"""
    logger.info("=" * 60)
    logger.info("DESCRIPTIVE STATISTICS")
    logger.info("=" * 60)

    conditions = describe_conditions(data, region, cfg)
    for label, row in conditions.iterrows():
        logger.info(
            f"  {label} (region {row['region']}): mean={row.get('mean', np.nan):.1f}ms, "
            f"sd={row.get('sd', np.nan):.1f}, n={row['n']}"
        )

    return {
        "conditions": conditions,
        "normality": normality_check(data),
        "region_profile": region_profile(data),
        "proficiency_correlations": proficiency_correlations(data, cfg),
    }
