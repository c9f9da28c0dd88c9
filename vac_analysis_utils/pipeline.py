"""
Response-variable pipelines

One parameterised pipeline (derive table -> 8 fits -> comparison -> R² and
profile CIs) run for each of the three reading-time measures. Pipelines
share no state and a fatal error in one does not stop the others.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import pandas as pd
from joblib import Parallel, delayed

import config
from vac_analysis_utils.data_loading import load_spr_data
from vac_analysis_utils.descriptives import run_descriptives
from vac_analysis_utils.errors import ComparisonError, ProfileError, TransformError
from vac_analysis_utils.misc_utils import (
    collect_log_records,
    replay_log_records,
    settings_snapshot,
)
from vac_analysis_utils.model_comparison import (
    ComparisonReport,
    coefficient_table,
    compare_sequence,
    marginal_conditional_r2,
    profile_confidence_intervals,
)
from vac_analysis_utils.model_fitting import FittedModel, fit_sequence
from vac_analysis_utils.model_specs import build_sequence
from vac_analysis_utils.transforms import (
    aggregate_regions,
    aggregate_whole,
    prepare_observations,
    select_region,
)

logger = logging.getLogger(__name__)

LOG_NAMESPACE = "vac_analysis_utils"


@dataclass(frozen=True)
class ResponseVariable:
    """How to derive one response table from the prepared observations"""

    name: str
    column: str
    builder: Callable[..., pd.DataFrame]
    args: Tuple = ()

    def derive(self, prepared: pd.DataFrame) -> pd.DataFrame:
        return self.builder(prepared, *self.args)


@dataclass
class PipelineOutcome:
    response: str
    column: str
    n_obs: int = 0
    report: Optional[ComparisonReport] = None
    fitted: List[FittedModel] = field(default_factory=list)
    error: Optional[str] = None
    notes: List[str] = field(default_factory=list)
    log_records: List[logging.LogRecord] = field(default_factory=list, repr=False)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "response": self.response,
            "column": self.column,
            "n_obs": self.n_obs,
            "ok": self.ok,
            "error": self.error,
            "notes": self.notes,
            "report": self.report.to_dict() if self.report is not None else None,
        }


def response_variables(cfg=None) -> Tuple[ResponseVariable, ...]:
    """Whole sentence, critical word and construction measures"""
    cfg = cfg or config
    return (
        ResponseVariable("whole_sentence", "logRT_whole", aggregate_whole, (cfg.N_REGIONS,)),
        ResponseVariable("critical_region", "logRT", select_region, (cfg.CRITICAL_REGION,)),
        ResponseVariable(
            "construction",
            "VAC_RT",
            aggregate_regions,
            (tuple(cfg.CONSTRUCTION_REGIONS),),
        ),
    )


def run_response_pipeline(
    prepared: pd.DataFrame,
    response: ResponseVariable,
    selected_model: int = 5,
    ci_level: float = 0.95,
    profile: bool = True,
    cfg=None,
) -> PipelineOutcome:
    """
    Run the full model sequence for one response variable

    Args:
        prepared: Output of prepare_observations
        response: Which measure to model
        selected_model: Model whose coefficients and profile CIs are reported
        ci_level: Confidence level for the profile intervals
        profile: Skip the (slow) profile CIs when False
        cfg: Configuration (module or settings snapshot)

    Returns:
        PipelineOutcome; transform and comparison errors are captured in
        ``error`` instead of propagating. Log records emitted while running
        are kept in ``log_records``.
    """
    outcome = PipelineOutcome(response=response.name, column=response.column)
    with collect_log_records(LOG_NAMESPACE) as records:
        _run_stages(outcome, prepared, response, selected_model, ci_level, profile, cfg)
    outcome.log_records = records
    return outcome


def _run_stages(outcome, prepared, response, selected_model, ci_level, profile, cfg):
    logger.info("=" * 60)
    logger.info(f"RESPONSE: {response.name} ({response.column})")
    logger.info("=" * 60)

    try:
        table = response.derive(prepared)
        outcome.n_obs = len(table)
        logger.info(f"  {len(table):,} rows in {response.name} table")

        specs = build_sequence(response.column)
        outcome.fitted = fit_sequence(specs, table, cfg)
        report = compare_sequence(outcome.fitted)
    except (TransformError, ComparisonError) as e:
        logger.error(f"Pipeline {response.name} aborted: {type(e).__name__}: {e}")
        outcome.error = f"{type(e).__name__}: {e}"
        return

    for model in outcome.fitted:
        report.r2[model.spec_id] = marginal_conditional_r2(model)

    by_id = {m.spec_id: m for m in outcome.fitted}
    chosen = by_id.get(selected_model)
    if chosen is None:
        outcome.notes.append(f"No model {selected_model} to summarise")
    else:
        report.coefficients[selected_model] = coefficient_table(chosen)
        r2m, r2c = report.r2[selected_model]
        logger.info(f"  Model {selected_model}: R2m={r2m:.4f}, R2c={r2c:.4f}")

        if profile:
            logger.info(f"  Profile {ci_level:.0%} CIs for model {selected_model}")
            try:
                report.confidence_intervals[selected_model] = (
                    profile_confidence_intervals(chosen, level=ci_level)
                )
            except ProfileError as e:
                logger.warning(f"  Profile CIs unavailable: {e}")
                outcome.notes.append(str(e))

    outcome.report = report


def run_all_pipelines(
    prepared: pd.DataFrame,
    cfg=None,
    n_jobs: Optional[int] = None,
    profile: bool = True,
    ci_level: Optional[float] = None,
) -> Dict[str, PipelineOutcome]:
    """
    Run the three response pipelines as independent tasks and collect them

    Worker processes do not share the parent's logging handlers, so their
    records are replayed here once the tasks finish.
    """
    cfg = cfg or config
    n_jobs = cfg.N_JOBS if n_jobs is None else n_jobs
    ci_level = cfg.CI_LEVEL if ci_level is None else ci_level
    responses = response_variables(cfg)
    settings = settings_snapshot(cfg)

    outcomes = Parallel(n_jobs=n_jobs, prefer="processes")(
        delayed(run_response_pipeline)(
            prepared,
            response,
            selected_model=settings.CI_MODEL_ID,
            ci_level=ci_level,
            profile=profile,
            cfg=settings,
        )
        for response in responses
    )

    for outcome in outcomes:
        replay_log_records(outcome.log_records)

    return {outcome.response: outcome for outcome in outcomes}


def run_analysis(
    source,
    cfg=None,
    n_jobs: Optional[int] = None,
    profile: bool = True,
    descriptive_region: Optional[int] = None,
    ci_level: Optional[float] = None,
) -> dict:
    """
    Load, prepare and model the dataset

    Loader and preparation errors propagate, so no pipeline starts on
    invalid data.

    Returns:
        {"descriptives": ..., "pipelines": {name: PipelineOutcome}}
    """
    cfg = cfg or config

    raw = load_spr_data(source, cfg)
    prepared = prepare_observations(raw, cfg)

    region = cfg.DESCRIPTIVE_REGION if descriptive_region is None else descriptive_region
    descriptives = run_descriptives(prepared, region, cfg)

    pipelines = run_all_pipelines(
        prepared, cfg, n_jobs=n_jobs, profile=profile, ci_level=ci_level
    )

    failed = [name for name, outcome in pipelines.items() if not outcome.ok]
    if failed:
        logger.warning(f"Pipelines failed: {failed}")

    return {"descriptives": descriptives, "pipelines": pipelines}
