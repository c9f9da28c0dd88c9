import json
import logging
import os
import pickle
from types import SimpleNamespace

import numpy as np
import pandas as pd
import pytest

import config
from vac_analysis_utils.misc_utils import (
    collect_log_records,
    create_output_directories,
    make_serializable,
    replay_log_records,
    save_json_results,
    settings_snapshot,
    validate_config,
)


def test_make_serializable_numpy_and_pandas():
    obj = {
        1: np.float64(0.5),
        "n": np.int64(3),
        "flag": np.bool_(True),
        "arr": np.array([1, 2]),
        "pair": (0.1, 0.2),
        "series": pd.Series({"a": 1.0}),
        "table": pd.DataFrame({"x": [1]}, index=pd.Index(["r"], name="term")),
    }

    out = make_serializable(obj)

    assert out["1"] == 0.5
    assert isinstance(out["n"], int)
    assert out["flag"] is True
    assert out["arr"] == [1, 2]
    assert out["pair"] == [0.1, 0.2]
    assert out["series"] == {"a": 1.0}
    assert out["table"] == [{"term": "r", "x": 1}]
    json.dumps(out)


def test_save_json_results(tmp_path):
    path = tmp_path / "out.json"

    save_json_results({"value": np.float32(1.5)}, path)

    assert json.loads(path.read_text(encoding="utf-8")) == {"value": 1.5}


def test_create_output_directories(tmp_path):
    dirs = create_output_directories(tmp_path / "results")

    assert dirs["results"].is_dir()
    assert dirs["tables"] == tmp_path / "results" / "tables"
    assert dirs["tables"].is_dir()


def test_validate_config_accepts_module():
    validate_config(config)


def make_config(**overrides):
    values = dict(
        REQUIRED_COLUMNS=config.REQUIRED_COLUMNS,
        STRENGTH_CODES=config.STRENGTH_CODES,
        CRITICAL_REGION=3,
        CONSTRUCTION_REGIONS=[2, 3, 4, 5],
        FIT_METHODS=["lbfgs"],
        CI_LEVEL=0.95,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def test_validate_config_missing_attribute():
    cfg = make_config()
    del cfg.FIT_METHODS

    with pytest.raises(AttributeError, match="FIT_METHODS"):
        validate_config(cfg)


def test_validate_config_bad_contrast():
    with pytest.raises(ValueError):
        validate_config(make_config(STRENGTH_CODES={"weak": 0.5, "strong": 0.5}))


def test_validate_config_bad_ci_level():
    with pytest.raises(ValueError, match="CI_LEVEL"):
        validate_config(make_config(CI_LEVEL=95))


def test_settings_snapshot_is_picklable():
    settings = settings_snapshot(config)
    partial = settings_snapshot(SimpleNamespace(N_JOBS=2, helper=len))

    assert settings.CI_MODEL_ID == config.CI_MODEL_ID
    assert vars(partial) == {"N_JOBS": 2}
    assert pickle.loads(pickle.dumps(settings)).FIT_METHODS == config.FIT_METHODS


def test_collect_log_records_restores_logger():
    target = logging.getLogger("vac_analysis_utils")
    target.setLevel(logging.WARNING)
    handlers = list(target.handlers)
    try:
        with collect_log_records("vac_analysis_utils") as records:
            logging.getLogger("vac_analysis_utils.model_fitting").info("fitted")
            logging.getLogger("elsewhere").info("ignored")

        assert [r.getMessage() for r in records] == ["fitted"]
        assert target.level == logging.WARNING
        assert target.handlers == handlers
    finally:
        target.setLevel(logging.NOTSET)


def test_replay_skips_records_from_this_process(caplog):
    def record(msg, process):
        r = logging.LogRecord("vac_analysis_utils.pipeline", logging.INFO, __file__, 1, msg, None, None)
        r.process = process
        return r

    with caplog.at_level(logging.INFO):
        replay_log_records([record("from worker", os.getpid() + 1), record("local", os.getpid())])

    assert caplog.messages == ["from worker"]
