"""
Model comparison and reporting

Likelihood-ratio tests across the nested sequence, marginal/conditional
R² and profile-likelihood confidence intervals for fixed effects.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats
from scipy.optimize import brentq

from vac_analysis_utils.errors import DegenerateComparisonError, ProfileError
from vac_analysis_utils.model_fitting import FittedModel, profile_loglike

logger = logging.getLogger(__name__)

MAX_BRACKET_EXPANSIONS = 12


@dataclass(frozen=True)
class LikelihoodRatioTest:
    model_a: int
    model_b: int
    lr_statistic: float
    df_diff: int
    p_value: float
    clamped: bool = False


@dataclass
class ComparisonReport:
    """Everything the presentation layer needs for one response variable"""

    response: str
    models: List[Dict] = field(default_factory=list)
    tests: List[LikelihoodRatioTest] = field(default_factory=list)
    r2: Dict[int, Tuple[float, float]] = field(default_factory=dict)
    coefficients: Dict[int, pd.DataFrame] = field(default_factory=dict)
    confidence_intervals: Dict[int, Dict[str, Tuple[float, float]]] = field(
        default_factory=dict
    )

    def flagged_models(self) -> List[int]:
        return [
            row["model"]
            for row in self.models
            if row["ConvergenceWarning"] or row["SingularFitError"]
        ]

    def to_frame(self) -> pd.DataFrame:
        """anova()-style table: one row per model, LR test against the previous one"""
        table = pd.DataFrame(self.models).set_index("model")
        tests = pd.DataFrame(
            [
                {
                    "model": t.model_b,
                    "Chisq": t.lr_statistic,
                    "Df": t.df_diff,
                    "Pr(>Chisq)": t.p_value,
                }
                for t in self.tests
            ],
            columns=["model", "Chisq", "Df", "Pr(>Chisq)"],
        ).set_index("model")
        return table.join(tests)

    def to_dict(self) -> dict:
        return {
            "response": self.response,
            "models": self.models,
            "tests": [asdict(t) for t in self.tests],
            "flagged_models": self.flagged_models(),
            "r2": {
                k: {"R2_marginal": m, "R2_conditional": c}
                for k, (m, c) in self.r2.items()
            },
            "coefficients": {
                k: v.reset_index().to_dict("records")
                for k, v in self.coefficients.items()
            },
            "confidence_intervals": {
                k: {term: list(bounds) for term, bounds in v.items()}
                for k, v in self.confidence_intervals.items()
            },
        }


def model_row(model: FittedModel) -> Dict:
    llf = model.log_likelihood
    df = model.degrees_of_freedom
    return {
        "model": model.spec_id,
        "formula": model.spec.describe() if model.spec is not None else "",
        "npar": df,
        "AIC": -2 * llf + 2 * df,
        "BIC": -2 * llf + df * np.log(model.n_obs),
        "logLik": llf,
        "deviance": -2 * llf,
        **model.flags(),
    }


def likelihood_ratio_test(
    model_a: FittedModel, model_b: FittedModel
) -> LikelihoodRatioTest:
    """
    Compare two nested ML fits, ``model_b`` being the richer one

    Raises:
        DegenerateComparisonError: ``model_b`` does not have more parameters
    """
    df_diff = model_b.degrees_of_freedom - model_a.degrees_of_freedom
    if df_diff <= 0:
        raise DegenerateComparisonError(
            f"Model {model_b.spec_id} (df={model_b.degrees_of_freedom}) is not richer "
            f"than model {model_a.spec_id} (df={model_a.degrees_of_freedom})"
        )

    raw = 2.0 * (model_b.log_likelihood - model_a.log_likelihood)
    clamped = bool(raw < 0)
    if clamped:
        # Nested ML fits cannot lose likelihood; a negative value is optimizer noise
        logger.warning(
            f"  Model {model_b.spec_id} logLik below model {model_a.spec_id} "
            f"(LR={raw:.4f}); set to 0"
        )
    lr = max(raw, 0.0) if np.isfinite(raw) else np.nan
    p_value = float(stats.chi2.sf(lr, df_diff)) if np.isfinite(lr) else np.nan

    return LikelihoodRatioTest(
        model_a=model_a.spec_id,
        model_b=model_b.spec_id,
        lr_statistic=float(lr),
        df_diff=int(df_diff),
        p_value=p_value,
        clamped=clamped,
    )


def compare_sequence(fitted_models: Sequence[FittedModel]) -> ComparisonReport:
    """
    Likelihood-ratio tests for each consecutive pair of the sequence

    The nesting precondition (strictly increasing df) is checked for the
    whole sequence before any test is computed.
    """
    if not fitted_models:
        raise ValueError("No fitted models to compare")

    for prev, nxt in zip(fitted_models, fitted_models[1:]):
        if nxt.degrees_of_freedom <= prev.degrees_of_freedom:
            raise DegenerateComparisonError(
                f"Models {prev.spec_id} -> {nxt.spec_id}: df "
                f"{prev.degrees_of_freedom} -> {nxt.degrees_of_freedom} is not increasing"
            )

    report = ComparisonReport(response=fitted_models[0].response)
    report.models = [model_row(m) for m in fitted_models]
    report.tests = [
        likelihood_ratio_test(a, b) for a, b in zip(fitted_models, fitted_models[1:])
    ]

    for t in report.tests:
        logger.info(
            f"  {t.model_a} vs {t.model_b}: Chisq={t.lr_statistic:.3f}, "
            f"Df={t.df_diff}, p={t.p_value:.4g}"
        )
    flagged = report.flagged_models()
    if flagged:
        logger.warning(f"  Unreliable fits in {report.response}: models {flagged}")

    return report


def marginal_conditional_r2(fitted_model: FittedModel) -> Tuple[float, float]:
    """
    Nakagawa & Schielzeth R² for a linear mixed model

    Fixed-effect variance is the variance of the fixed-effect predictions;
    each variance component contributes sigma² times the mean squared
    covariate it scales (1 for intercepts, Johnson's random-slope
    extension).

    Returns:
        (R2_marginal, R2_conditional)
    """
    design = fitted_model.design
    if design is None or fitted_model.spec is None:
        raise ValueError(f"Model {fitted_model.spec_id} carries no design")

    beta = np.array([fitted_model.coefficients[n][0] for n in design.fixed_names])
    if not np.all(np.isfinite(beta)):
        return np.nan, np.nan

    var_fixed = float(np.var(design.fixed_matrix() @ beta))

    var_random = 0.0
    covariates = fitted_model.spec.variance_covariates()
    for name, variance in fitted_model.random_effect_variances.items():
        covariate = covariates.get(name)
        weight = (
            1.0
            if covariate is None
            else float(np.mean(design.frame[covariate].to_numpy(dtype=float) ** 2))
        )
        var_random += max(variance, 0.0) * weight

    var_residual = max(fitted_model.residual_variance, 0.0)
    total = var_fixed + var_random + var_residual
    if total <= 0:
        return np.nan, np.nan

    r2_marginal = var_fixed / total
    r2_conditional = (var_fixed + var_random) / total
    return float(r2_marginal), float(r2_conditional)


def _find_bound(deviance, estimate: float, step: float, direction: int, critical: float) -> float:
    # Expand until the profile deviance crosses the critical value, then solve
    def f(value):
        return deviance(value) - critical

    inner = estimate
    outer = estimate + direction * step
    for _ in range(MAX_BRACKET_EXPANSIONS):
        if f(outer) > 0:
            lo, hi = sorted((inner, outer))
            return float(brentq(f, lo, hi, xtol=1e-6 * max(1.0, abs(estimate))))
        inner = outer
        step *= 2.0
        outer = estimate + direction * step
    return float(np.inf * direction)


def profile_confidence_intervals(
    fitted_model: FittedModel,
    level: float = 0.95,
    terms: Optional[Sequence[str]] = None,
) -> Dict[str, Tuple[float, float]]:
    """
    Profile-likelihood confidence intervals for fixed effects

    For each coefficient the model is refit with the coefficient held at
    trial values; the interval bounds are where the profile deviance
    ``2 * (logLik_hat - logLik(b))`` reaches the chi-square(1) quantile.

    Args:
        fitted_model: ML-fitted model
        level: Confidence level
        terms: Coefficients to profile (default: all)

    Returns:
        {term: (lower, upper)}; an unbounded side is +-inf

    Raises:
        ProfileError: a term cannot be profiled
    """
    if not 0 < level < 1:
        raise ValueError(f"level must be in (0, 1), got {level}")
    if not np.isfinite(fitted_model.log_likelihood):
        raise ProfileError(f"Model {fitted_model.spec_id} has no finite log-likelihood")

    critical = float(stats.chi2.ppf(level, 1))
    llf_hat = fitted_model.log_likelihood
    terms = list(terms) if terms is not None else list(fitted_model.coefficients)

    intervals = {}
    for term in terms:
        if term not in fitted_model.coefficients:
            raise ProfileError(f"Unknown term '{term}' in model {fitted_model.spec_id}")
        estimate, se = fitted_model.coefficients[term]

        def deviance(value, term=term):
            return 2.0 * (llf_hat - profile_loglike(fitted_model, term, value))

        step = se if np.isfinite(se) and se > 0 else 0.1 * max(abs(estimate), 1.0)
        step *= np.sqrt(critical)

        lower = _find_bound(deviance, estimate, step, -1, critical)
        upper = _find_bound(deviance, estimate, step, 1, critical)
        intervals[term] = (lower, upper)
        logger.info(f"    {term}: [{lower:.4f}, {upper:.4f}]")

    return intervals


def coefficient_table(fitted_model: FittedModel) -> pd.DataFrame:
    """Estimate, Std. Error and t value per fixed effect"""
    rows = [
        {"term": term, "Estimate": est, "Std. Error": se, "t value": est / se if se else np.nan}
        for term, (est, se) in fitted_model.coefficients.items()
    ]
    return pd.DataFrame(rows).set_index("term")
