"""
General utilities for the VAC reading-time analysis
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

REQUIRED_CONFIG = [
    "REQUIRED_COLUMNS",
    "STRENGTH_CODES",
    "CRITICAL_REGION",
    "CONSTRUCTION_REGIONS",
    "FIT_METHODS",
]


def make_serializable(obj: Any) -> Any:
    """
    Convert non-serializable objects to serializable format for JSON output

    Args:
        obj: Object to make serializable

    Returns:
        Serializable version of the object
    """
    if isinstance(obj, dict):
        return {str(k): make_serializable(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [make_serializable(v) for v in obj]
    elif isinstance(obj, pd.DataFrame):
        return make_serializable(obj.reset_index().to_dict("records"))
    elif isinstance(obj, pd.Series):
        return make_serializable(obj.to_dict())
    elif isinstance(obj, np.ndarray):
        return make_serializable(obj.tolist())
    elif isinstance(obj, (np.integer, np.floating, np.bool_)):
        return obj.item()
    elif hasattr(obj, "to_dict"):
        return make_serializable(obj.to_dict())
    else:
        return obj


def save_json_results(results: dict, filepath: Path) -> None:
    """
    Save analysis results to JSON file

    Args:
        results: Dictionary with analysis results
        filepath: Path to save JSON file
    """
    serializable_results = make_serializable(results)
    with open(filepath, "w", encoding="utf-8") as f:
        json.dump(serializable_results, f, indent=2)
    logger.info(f"Results saved to {filepath}")


def create_output_directories(base_dir: Path) -> dict:
    """
    Create necessary output directories

    Args:
        base_dir: Base directory for outputs

    Returns:
        Dictionary with created directory paths
    """
    directories = {
        "results": base_dir,
        "tables": base_dir / "tables",
    }

    for name, dir_path in directories.items():
        dir_path.mkdir(exist_ok=True, parents=True)
        logger.debug(f"Created directory: {dir_path}")

    return directories


def setup_logging(results_dir: Path, log_file: str = "vac_analysis.log") -> None:
    """
    Setup logging: rotating UTF-8 file in the results directory plus console
    """
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    root.handlers = []

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    file_handler = RotatingFileHandler(
        Path(results_dir) / log_file,
        maxBytes=5_000_000,
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))

    root.addHandler(file_handler)
    root.addHandler(console_handler)


def validate_config(config) -> None:
    """
    Validate configuration object has required attributes

    Args:
        config: Configuration object to validate

    Raises:
        AttributeError: If required configuration is missing
        ValueError: If the strength mapping is not a two-level contrast
    """
    for attr in REQUIRED_CONFIG:
        if not hasattr(config, attr):
            raise AttributeError(f"Configuration missing required attribute: {attr}")

    codes = config.STRENGTH_CODES
    if len(codes) != 2 or len(set(codes.values())) != 2:
        raise ValueError(f"STRENGTH_CODES must map two labels to two codes: {codes}")

    ci_level = getattr(config, "CI_LEVEL", 0.95)
    if not 0 < ci_level < 1:
        raise ValueError(f"CI_LEVEL must be in (0, 1), got {ci_level}")

    data_path = Path(getattr(config, "DATA_PATH", ""))
    if not data_path.exists():
        logger.warning(f"SPR data path does not exist: {data_path}")


def settings_snapshot(config) -> SimpleNamespace:
    """Picklable copy of the upper-case settings of a config module/object"""
    return SimpleNamespace(
        **{name: getattr(config, name) for name in dir(config) if name.isupper()}
    )


class LogRecordCollector(logging.Handler):
    """Keeps every record it receives"""

    def __init__(self, level=logging.INFO):
        super().__init__(level)
        self.records = []

    def emit(self, record):
        self.records.append(record)


@contextmanager
def collect_log_records(name: str, level=logging.INFO):
    """
    Collect records of logger ``name`` and its children

    The logger is lowered to ``level`` while collecting, since a joblib
    worker starts with an unconfigured root logger.
    """
    target = logging.getLogger(name)
    collector = LogRecordCollector(level)
    previous_level = target.level
    if target.getEffectiveLevel() > level:
        target.setLevel(level)
    target.addHandler(collector)
    try:
        yield collector.records
    finally:
        target.removeHandler(collector)
        target.setLevel(previous_level)


def replay_log_records(records) -> None:
    """Re-emit records that were logged in another process"""
    pid = os.getpid()
    for record in records:
        if record.process != pid:
            logging.getLogger(record.name).handle(record)
