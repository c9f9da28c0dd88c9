import pytest

from vac_analysis_utils.model_fitting import build_design, degrees_of_freedom
from vac_analysis_utils.model_specs import RandomEffect, build_sequence


def test_sequence_has_eight_models():
    specs = build_sequence("logRT")

    assert [s.spec_id for s in specs] == list(range(1, 9))
    assert all(s.response == "logRT" for s in specs)


def test_sequence_shape_independent_of_response():
    shapes = [
        [(s.spec_id, s.fixed_terms(), s.vc_formula()) for s in build_sequence(resp)]
        for resp in ("logRT_whole", "logRT", "VAC_RT")
    ]

    assert shapes[0] == shapes[1] == shapes[2]


def test_fixed_formulas():
    specs = build_sequence("VAC_RT")

    assert specs[0].fixed_formula() == "VAC_RT ~ 1"
    assert specs[1].fixed_formula() == "VAC_RT ~ strength_code"
    assert specs[3].fixed_formula() == "VAC_RT ~ strength_code + EIT_score + C(VAC_type)"
    assert specs[7].fixed_terms()[-1] == "strength_code:EIT_score:C(VAC_type)"


def test_random_structure_escalation():
    specs = build_sequence("logRT")

    assert list(specs[3].vc_formula()) == ["subject"]
    assert list(specs[4].vc_formula()) == ["subject", "item"]
    assert list(specs[5].vc_formula()) == ["subject", "subject:strength_code", "item"]
    assert specs[6].vc_formula()["item:strength_code"] == "0 + C(item):strength_code"
    assert specs[7].vc_formula() == specs[6].vc_formula()


def test_describe_uses_lme4_notation():
    spec = build_sequence("logRT")[6]

    assert spec.describe().endswith(
        "(1 + strength_code | subject) + (1 + strength_code | item)"
    )


def test_variance_covariates():
    spec = build_sequence("logRT")[5]

    assert spec.variance_covariates() == {
        "subject": None,
        "subject:strength_code": "strength_code",
        "item": None,
    }


def test_unknown_grouping_factor():
    with pytest.raises(ValueError):
        RandomEffect("sentence")


def test_specs_are_immutable():
    spec = build_sequence("logRT")[0]

    with pytest.raises(AttributeError):
        spec.spec_id = 9


def test_degrees_of_freedom_strictly_increase(critical_table):
    specs = build_sequence("logRT")
    dfs = [degrees_of_freedom(s, build_design(s, critical_table)) for s in specs]

    assert dfs == [3, 4, 5, 8, 9, 10, 11, 15]
    assert all(b > a for a, b in zip(dfs, dfs[1:]))


def test_grouping_factors():
    specs = build_sequence("logRT")

    assert [s.grouping_factors() for s in specs[:4]] == [("subject",)] * 4
    assert all(s.grouping_factors() == ("subject", "item") for s in specs[4:])
