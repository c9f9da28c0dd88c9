import logging

import numpy as np
import pandas as pd
import pytest

from vac_analysis_utils.model_fitting import fit_sequence
from vac_analysis_utils.model_specs import build_sequence
from vac_analysis_utils.transforms import prepare_observations, select_region

VAC_TYPES = ["VaN", "VenN", "VdeN", "VconN"]


def make_spr_data(
    n_subjects: int = 12,
    n_items: int = 16,
    n_regions: int = 7,
    seed: int = 2024,
    uniform_rt: bool = False,
) -> pd.DataFrame:
    """
    Synthetic SPR dataset in the raw input schema

    Strength is counterbalanced across subjects so that it varies within
    both subjects and items.
    """
    rng = np.random.default_rng(seed)
    eit = rng.uniform(10, 30, n_subjects)
    subj_effect = rng.normal(0, 0.15, n_subjects)
    subj_slope = rng.normal(0, 0.05, n_subjects)
    item_effect = rng.normal(0, 0.08, n_items)

    rows = []
    for s in range(n_subjects):
        for i in range(n_items):
            strength = "strong" if (s + i) % 2 == 0 else "weak"
            code = 0.5 if strength == "strong" else -0.5
            vac = VAC_TYPES[i % len(VAC_TYPES)]
            for r in range(1, n_regions + 1):
                if uniform_rt:
                    rt = rng.uniform(200, 900)
                else:
                    log_rt = (
                        6.0
                        + subj_effect[s]
                        + item_effect[i]
                        - 0.01 * (eit[s] - 20)
                        + (0.08 + subj_slope[s]) * -code
                        + 0.05 * VAC_TYPES.index(vac) / 3
                        + rng.normal(0, 0.2)
                    )
                    rt = float(np.exp(log_rt))
                rows.append(
                    {
                        "subject": f"S{s + 1:02d}",
                        "item": i + 1,
                        "region": r,
                        "verb_strength": strength,
                        "VAC.type": vac,
                        "EIT_score": float(round(eit[s], 1)),
                        "RT_raw": rt,
                    }
                )
    return pd.DataFrame(rows)


@pytest.fixture
def raw_data():
    return make_spr_data()


@pytest.fixture
def small_raw_data():
    # 2 subjects x 2 items x 7 regions, RTs in [200, 900] ms
    return make_spr_data(n_subjects=2, n_items=2, uniform_rt=True, seed=7)


@pytest.fixture
def loaded_data(raw_data):
    return raw_data.rename(columns={"VAC.type": "VAC_type"})


@pytest.fixture
def prepared_data(loaded_data):
    return prepare_observations(loaded_data)


@pytest.fixture(scope="session")
def critical_table():
    data = make_spr_data().rename(columns={"VAC.type": "VAC_type"})
    return select_region(prepare_observations(data), 3)


@pytest.fixture(scope="session")
def fitted_critical(critical_table):
    return fit_sequence(build_sequence("logRT"), critical_table)


@pytest.fixture
def spr_data_factory():
    return make_spr_data


@pytest.fixture
def reset_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)
