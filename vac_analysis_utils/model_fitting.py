"""
Model fitting engine

Fits one ModelSpec as a linear mixed model by maximum likelihood with
statsmodels. A model whose random effects all belong to one grouping
factor is fitted with that factor as the statsmodels group. Subjects and
items are crossed, so a model with both uses variance components over a
single all-rows group. Optimizer trouble is recorded on the result
instead of being raised.
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import patsy
import statsmodels.formula.api as smf
from statsmodels.tools.sm_exceptions import ConvergenceWarning
from tqdm import tqdm

import config
from vac_analysis_utils.errors import ProfileError
from vac_analysis_utils.model_specs import GROUPING_FACTORS, STRENGTH, ModelSpec

logger = logging.getLogger(__name__)

RESPONSE_COL = "_y"
GROUP_COL = "_all"

# statsmodels warns about the boundary whenever a variance is below an
# absolute 0.01, and announces each fallback optimizer; neither is a flag
INFORMATIONAL_MARKERS = ("may be on the boundary", "retrying mixedlm optimization")
SINGULAR_MARKERS = ("covariance is singular",)


@dataclass(frozen=True)
class RandomStructure:
    """statsmodels grouping, random-intercept formula and variance components"""

    groups: str
    re_formula: Optional[str]
    vc_formula: Dict[str, str]

    @property
    def grouped_intercept(self) -> bool:
        return self.re_formula == "1"


def random_structure(spec: ModelSpec) -> RandomStructure:
    """
    Map the random effects of ``spec`` onto statsmodels arguments

    With one grouping factor the factor itself is the group, its intercept
    goes into ``re_formula`` and each slope is an independent variance
    component within the group. Crossed factors share one all-rows group.
    """
    factors = spec.grouping_factors()
    if len(factors) != 1:
        return RandomStructure(groups=GROUP_COL, re_formula=None, vc_formula=spec.vc_formula())

    factor = factors[0]
    intercept = any(effect.intercept for effect in spec.random_effects)
    slopes = {
        f"{factor}:{slope}": f"0 + {slope}"
        for effect in spec.random_effects
        for slope in effect.slopes
    }
    return RandomStructure(
        groups=factor, re_formula="1" if intercept else "0", vc_formula=slopes
    )


@dataclass(frozen=True)
class ModelDesign:
    """Numeric model frame shared by fitting, R² and profiling"""

    frame: pd.DataFrame
    fixed_names: Tuple[str, ...]
    random: RandomStructure
    fit_methods: Tuple[str, ...] = tuple(config.FIT_METHODS)

    @property
    def fixed_columns(self) -> Tuple[str, ...]:
        return tuple(f"x{j}" for j in range(len(self.fixed_names)))

    def fixed_matrix(self) -> np.ndarray:
        return self.frame[list(self.fixed_columns)].to_numpy(dtype=float)

    def formula(self, columns: Sequence[str]) -> str:
        return f"{RESPONSE_COL} ~ 0 + {' + '.join(columns)}"


@dataclass(frozen=True)
class FittedModel:
    spec_id: int
    response: str
    coefficients: Dict[str, Tuple[float, float]]
    log_likelihood: float
    degrees_of_freedom: int
    n_obs: int
    convergence_warning: bool
    singular_fit: bool
    random_effect_variances: Dict[str, float]
    residual_variance: float
    messages: Tuple[str, ...] = ()
    spec: Optional[ModelSpec] = field(default=None, compare=False, repr=False)
    design: Optional[ModelDesign] = field(default=None, compare=False, repr=False)

    @property
    def reliable(self) -> bool:
        return not (self.convergence_warning or self.singular_fit)

    def flags(self) -> Dict[str, bool]:
        return {
            "ConvergenceWarning": self.convergence_warning,
            "SingularFitError": self.singular_fit,
        }


def build_design(spec: ModelSpec, data: pd.DataFrame, cfg=None) -> ModelDesign:
    """
    Build the fixed-effects design of ``spec`` on ``data``

    Fixed columns are renamed x0..xk so that a coefficient can later be
    dropped from the formula when profiling it.
    """
    cfg = cfg or config

    needed = [spec.response, STRENGTH, *GROUPING_FACTORS]
    missing = [col for col in needed if col not in data.columns]
    if missing:
        raise ValueError(f"Model {spec.spec_id} needs missing columns: {missing}")

    y, X = patsy.dmatrices(
        spec.fixed_formula(), data, return_type="dataframe", NA_action="raise"
    )

    fixed_names = tuple(X.columns)
    frame = pd.DataFrame(
        X.to_numpy(dtype=float), columns=[f"x{j}" for j in range(X.shape[1])]
    )
    frame[RESPONSE_COL] = y.iloc[:, 0].to_numpy(dtype=float)
    for col in (*GROUPING_FACTORS, STRENGTH):
        frame[col] = data[col].to_numpy()
    frame[GROUP_COL] = 1

    return ModelDesign(
        frame=frame,
        fixed_names=fixed_names,
        random=random_structure(spec),
        fit_methods=tuple(cfg.FIT_METHODS),
    )


def _run_optimizer(spec: ModelSpec, frame: pd.DataFrame, formula: str, design: ModelDesign):
    """Single statsmodels ML fit; the only place the optimizer is called"""
    random = design.random
    model = smf.mixedlm(
        formula,
        frame,
        groups=random.groups,
        re_formula=random.re_formula,
        vc_formula=random.vc_formula or None,
    )
    return model.fit(reml=False, method=list(design.fit_methods))


def _classify_warnings(caught: List[warnings.WarningMessage]) -> Tuple[bool, bool, List[str]]:
    convergence, singular = False, False
    messages = []
    for w in caught:
        text = str(w.message)
        lowered = text.lower()
        messages.append(f"{w.category.__name__}: {text}")
        if any(marker in lowered for marker in SINGULAR_MARKERS):
            singular = True
        elif not issubclass(w.category, ConvergenceWarning):
            continue
        elif not any(marker in lowered for marker in INFORMATIONAL_MARKERS):
            convergence = True
    return convergence, singular, messages


def _variance_components(result, random: RandomStructure) -> Dict[str, float]:
    variances = {}
    if random.grouped_intercept:
        variances[random.groups] = float(np.asarray(result.cov_re)[0, 0])
    names = result.model.exog_vc.names if random.vc_formula else []
    variances.update({name: float(v) for name, v in zip(names, result.vcomp)})
    return variances


def degrees_of_freedom(spec: ModelSpec, design: ModelDesign) -> int:
    """Fixed coefficients + variance components + residual variance"""
    return len(design.fixed_names) + spec.n_variance_components() + 1


def fit_model(spec: ModelSpec, data: pd.DataFrame, cfg=None) -> FittedModel:
    """
    Fit one specification by maximum likelihood

    Args:
        spec: Model specification
        data: Response table for ``spec.response``
        cfg: Configuration module/object (defaults to config)

    Returns:
        FittedModel; convergence and boundary problems are flagged, and a
        numerical failure yields a flagged model with NaN log-likelihood
    """
    cfg = cfg or config
    design = build_design(spec, data, cfg)
    df = degrees_of_freedom(spec, design)

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            result = _run_optimizer(
                spec, design.frame, design.formula(design.fixed_columns), design
            )
        except (np.linalg.LinAlgError, ValueError) as e:
            logger.error(f"  Model {spec.spec_id} ({spec.response}) failed: {e}")
            result = None
            failure = f"{type(e).__name__}: {e}"

    convergence, singular, messages = _classify_warnings(caught)

    if result is None:
        return FittedModel(
            spec_id=spec.spec_id,
            response=spec.response,
            coefficients={name: (np.nan, np.nan) for name in design.fixed_names},
            log_likelihood=np.nan,
            degrees_of_freedom=df,
            n_obs=len(design.frame),
            convergence_warning=True,
            singular_fit=singular,
            random_effect_variances={},
            residual_variance=np.nan,
            messages=tuple(messages + [failure]),
            spec=spec,
            design=design,
        )

    if not getattr(result, "converged", True):
        convergence = True
        messages.append("optimizer did not report convergence")

    variances = _variance_components(result, design.random)
    scale = float(result.scale)
    total = scale + sum(max(v, 0.0) for v in variances.values())
    on_boundary = [
        name for name, v in variances.items() if v <= cfg.SINGULAR_TOL * total
    ]
    if on_boundary:
        singular = True
        messages.append(f"variance components on boundary: {on_boundary}")

    estimates = np.asarray(result.fe_params, dtype=float)
    ses = np.asarray(result.bse_fe, dtype=float)
    coefficients = {
        name: (float(est), float(se))
        for name, est, se in zip(design.fixed_names, estimates, ses)
    }

    fitted = FittedModel(
        spec_id=spec.spec_id,
        response=spec.response,
        coefficients=coefficients,
        log_likelihood=float(result.llf),
        degrees_of_freedom=df,
        n_obs=len(design.frame),
        convergence_warning=convergence,
        singular_fit=singular,
        random_effect_variances=variances,
        residual_variance=scale,
        messages=tuple(messages),
        spec=spec,
        design=design,
    )

    status = "OK" if fitted.reliable else "FLAGGED"
    logger.info(
        f"  Model {spec.spec_id}: logLik={fitted.log_likelihood:.3f}, df={df} [{status}]"
    )
    for message in messages:
        logger.warning(f"    Model {spec.spec_id}: {message}")

    return fitted


def fit_sequence(specs: Sequence[ModelSpec], data: pd.DataFrame, cfg=None) -> List[FittedModel]:
    """Fit every spec independently, in order"""
    fitted = []
    for spec in tqdm(specs, desc=f"  {specs[0].response} models", leave=False):
        fitted.append(fit_model(spec, data, cfg))
    return fitted


def profile_loglike(fitted: FittedModel, term: str, value: float) -> float:
    """
    Maximised log-likelihood with coefficient ``term`` held at ``value``

    Raises:
        ProfileError: the model has no design, ``term`` is its only fixed
            coefficient, or the refit fails numerically
    """
    design = fitted.design
    if design is None or fitted.spec is None:
        raise ProfileError(f"Model {fitted.spec_id} carries no design to refit")
    if term not in design.fixed_names:
        raise ProfileError(f"Unknown term '{term}' in model {fitted.spec_id}")

    column = design.fixed_columns[design.fixed_names.index(term)]
    remaining = [c for c in design.fixed_columns if c != column]
    if not remaining:
        raise ProfileError(
            f"Cannot profile '{term}': it is the only fixed effect of model {fitted.spec_id}"
        )

    frame = design.frame.copy()
    frame[RESPONSE_COL] = frame[RESPONSE_COL] - value * frame[column]

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        try:
            result = _run_optimizer(fitted.spec, frame, design.formula(remaining), design)
        except (np.linalg.LinAlgError, ValueError) as e:
            raise ProfileError(
                f"Profile refit of '{term}' at {value:.4g} failed in model "
                f"{fitted.spec_id}: {type(e).__name__}: {e}"
            ) from e
    return float(result.llf)
