import numpy as np
import pandas as pd
import pytest

from vac_analysis_utils.errors import (
    ContrastBalanceError,
    DomainError,
    EmptyResultError,
    UnknownLevelError,
)
from vac_analysis_utils.transforms import (
    aggregate_regions,
    aggregate_whole,
    check_contrast_balance,
    code_contrast,
    log_transform,
    prepare_observations,
    select_region,
)

STRENGTH_CODES = {"weak": -0.5, "strong": 0.5}


def test_log_transform_matches_natural_log(loaded_data):
    out = log_transform(loaded_data)

    np.testing.assert_allclose(out["logRT"], np.log(loaded_data["RT_raw"]), rtol=1e-12)
    assert "logRT" not in loaded_data.columns


@pytest.mark.parametrize("value", [0.0, -1.0])
def test_log_transform_rejects_non_positive(loaded_data, value):
    bad = loaded_data.copy()
    bad.loc[0, "RT_raw"] = value

    with pytest.raises(DomainError):
        log_transform(bad)


def test_code_contrast_values(loaded_data):
    out = code_contrast(loaded_data, "verb_strength", STRENGTH_CODES, target="strength_code")

    assert set(out["strength_code"].unique()) <= {-0.5, 0.5}
    weak = out["verb_strength"] == "weak"
    assert (out.loc[weak, "strength_code"] == -0.5).all()
    assert (out.loc[~weak, "strength_code"] == 0.5).all()


def test_code_contrast_overwrites_field_by_default(loaded_data):
    out = code_contrast(loaded_data, "verb_strength", STRENGTH_CODES)

    assert out["verb_strength"].dtype == float
    assert set(loaded_data["verb_strength"].unique()) == {"weak", "strong"}


def test_unknown_level_raises(loaded_data):
    bad = loaded_data.copy()
    bad.loc[4, "verb_strength"] = "moderate"

    with pytest.raises(UnknownLevelError, match="moderate"):
        code_contrast(bad, "verb_strength", STRENGTH_CODES)


@pytest.mark.parametrize(
    "mapping",
    [
        {"weak": -0.5},
        {"weak": 0.5, "strong": 0.5},
        {"weak": -0.5, "strong": 0.5, "medium": 0.0},
    ],
)
def test_mapping_must_be_two_level_bijection(loaded_data, mapping):
    with pytest.raises(ValueError):
        code_contrast(loaded_data, "verb_strength", mapping)


def test_contrast_balance(prepared_data):
    assert check_contrast_balance(prepared_data) == pytest.approx(0.0)


def test_contrast_imbalance_strict_raises(prepared_data):
    unbalanced = prepared_data[prepared_data["strength_code"] > 0]

    with pytest.raises(ContrastBalanceError):
        check_contrast_balance(unbalanced, strict=True)
    assert check_contrast_balance(unbalanced, strict=False) == pytest.approx(0.5)


def test_prepare_observations_adds_columns(loaded_data):
    out = prepare_observations(loaded_data)

    assert {"logRT", "strength_code"} <= set(out.columns)
    assert len(out) == len(loaded_data)


def test_scenario_two_by_two(small_raw_data):
    data = prepare_observations(small_raw_data.rename(columns={"VAC.type": "VAC_type"}))

    assert data["RT_raw"].between(200, 900).all()

    whole = aggregate_whole(data)
    critical = select_region(data, 3)
    constr = aggregate_regions(data, {2, 3, 4, 5})

    assert len(whole) == 4
    assert len(critical) == 4
    assert (critical["region"] == 3).all()
    assert len(constr) == 4

    for _, row in constr.iterrows():
        trial = data[(data["subject"] == row["subject"]) & (data["item"] == row["item"])]
        assert trial["region"].isin([2, 3, 4, 5]).sum() == 4
        expected = trial.loc[trial["region"].isin([2, 3, 4, 5]), "logRT"].sum()
        assert row["VAC_RT"] == pytest.approx(expected)


def test_aggregate_whole_sums_all_regions(prepared_data):
    whole = aggregate_whole(prepared_data)

    expected = prepared_data.groupby(["subject", "item"])["logRT"].sum()
    got = whole.set_index(["subject", "item"])["logRT_whole"]
    pd.testing.assert_series_equal(
        got.sort_index(), expected.sort_index(), check_names=False
    )
    assert {"EIT_score", "VAC_type", "strength_code"} <= set(whole.columns)


def test_aggregate_whole_is_deterministic(prepared_data):
    shuffled = prepared_data.sample(frac=1.0, random_state=3)

    first = aggregate_whole(prepared_data)
    again = aggregate_whole(prepared_data)
    from_shuffled = aggregate_whole(shuffled)

    pd.testing.assert_frame_equal(first, again)
    pd.testing.assert_frame_equal(first, from_shuffled, check_exact=False, rtol=1e-12)


def test_aggregate_whole_keeps_partial_trials(prepared_data):
    first_trial = prepared_data[
        (prepared_data["subject"] == "S01") & (prepared_data["item"] == 1)
    ]
    partial = prepared_data.drop(first_trial.index[first_trial["region"] == 7])

    whole = aggregate_whole(partial)
    row = whole[(whole["subject"] == "S01") & (whole["item"] == 1)].iloc[0]

    assert len(whole) == len(aggregate_whole(prepared_data))
    assert row["logRT_whole"] == pytest.approx(
        first_trial.loc[first_trial["region"] != 7, "logRT"].sum()
    )


def test_transforms_do_not_mutate_input(prepared_data):
    before = prepared_data.copy()

    aggregate_whole(prepared_data)
    select_region(prepared_data, 3)
    aggregate_regions(prepared_data, [2, 3, 4, 5])

    pd.testing.assert_frame_equal(prepared_data, before)


def test_select_region_empty_raises(prepared_data):
    with pytest.raises(EmptyResultError):
        select_region(prepared_data, 9)


def test_aggregate_regions_empty_raises(prepared_data):
    with pytest.raises(EmptyResultError):
        aggregate_regions(prepared_data, [11, 12])
