#!/usr/bin/env python3
"""
VAC Reading-Time Analysis Pipeline
Mixed-effects model sequences for whole-sentence, critical-word and
construction reading times
"""

import argparse
import logging
import sys
from pathlib import Path

import pandas as pd

import config
from vac_analysis_utils.errors import AnalysisError
from vac_analysis_utils.misc_utils import (
    create_output_directories,
    save_json_results,
    setup_logging,
    validate_config,
)
from vac_analysis_utils.pipeline import run_analysis

logger = logging.getLogger(__name__)


class VACAnalysisPipeline:
    """End-to-end analysis: load, prepare, model and write reports"""

    def __init__(
        self,
        results_dir: str = "results",
        n_jobs: int = None,
        profile: bool = True,
        descriptive_region: int = None,
        ci_level: float = None,
        config_obj=None,
    ):
        self.config = config_obj or config
        validate_config(self.config)

        self.results_dir = Path(results_dir)
        self.directories = create_output_directories(self.results_dir)
        setup_logging(self.results_dir)

        self.n_jobs = n_jobs
        self.profile = profile
        self.descriptive_region = descriptive_region
        self.ci_level = ci_level

        logger.info("=" * 80)
        logger.info("VAC READING-TIME ANALYSIS PIPELINE")
        logger.info("=" * 80)
        logger.info(f"Results directory: {self.results_dir}")
        logger.info(f"Profile CIs: {'ENABLED' if profile else 'DISABLED'}")

    def run(self, data_path: str) -> dict:
        """Execute the analysis and save all outputs"""
        results = run_analysis(
            data_path,
            cfg=self.config,
            n_jobs=self.n_jobs,
            profile=self.profile,
            descriptive_region=self.descriptive_region,
            ci_level=self.ci_level,
        )

        self._save_descriptives(results["descriptives"])
        summary = self._save_pipelines(results["pipelines"])
        save_json_results(summary, self.results_dir / "analysis_summary.json")

        logger.info("=" * 80)
        logger.info("ANALYSIS COMPLETE")
        for name, status in summary["status"].items():
            logger.info(f"  {name}: {status}")
        logger.info("=" * 80)

        return results

    def _save_descriptives(self, descriptives: dict):
        tables = self.directories["tables"]
        descriptives["conditions"].to_csv(tables / "descriptives_conditions.csv")
        descriptives["region_profile"].to_csv(
            tables / "region_profile.csv", index=False
        )
        descriptives["proficiency_correlations"].to_csv(
            tables / "proficiency_correlations.csv"
        )
        save_json_results(descriptives, self.results_dir / "descriptives.json")

    def _save_pipelines(self, pipelines: dict) -> dict:
        tables = self.directories["tables"]
        summary = {"status": {}, "flagged_models": {}}

        for name, outcome in pipelines.items():
            save_json_results(outcome.to_dict(), self.results_dir / f"{name}_report.json")

            if not outcome.ok:
                summary["status"][name] = f"FAILED ({outcome.error})"
                continue

            report = outcome.report
            report.to_frame().to_csv(tables / f"{name}_model_comparison.csv")
            for model_id, coefs in report.coefficients.items():
                coefs.to_csv(tables / f"{name}_model{model_id}_coefficients.csv")
            for model_id, intervals in report.confidence_intervals.items():
                ci_table = pd.DataFrame.from_dict(
                    intervals, orient="index", columns=["lower", "upper"]
                ).rename_axis("term")
                ci_table.to_csv(tables / f"{name}_model{model_id}_profile_ci.csv")

            summary["status"][name] = "OK"
            summary["flagged_models"][name] = report.flagged_models()

        return summary


def main():
    parser = argparse.ArgumentParser(
        description="Mixed-effects analysis of VAC self-paced reading times"
    )
    parser.add_argument(
        "--data-path",
        type=str,
        default=config.DATA_PATH,
        help="Path to the SPR CSV (one row per region per trial)",
    )
    parser.add_argument(
        "--results-dir",
        type=str,
        default=config.RESULTS_DIR,
        help="Directory for all output",
    )
    parser.add_argument(
        "--n-jobs",
        type=int,
        default=config.N_JOBS,
        help="Parallel response pipelines (default: 3)",
    )
    parser.add_argument(
        "--descriptive-region",
        type=int,
        default=config.DESCRIPTIVE_REGION,
        help="Region used for raw-RT descriptives",
    )
    parser.add_argument(
        "--ci-level",
        type=float,
        default=config.CI_LEVEL,
        help="Confidence level of the profile intervals",
    )
    parser.add_argument(
        "--no-profile",
        action="store_true",
        help="Skip profile-likelihood confidence intervals",
    )

    args = parser.parse_args()

    pipeline = VACAnalysisPipeline(
        results_dir=args.results_dir,
        n_jobs=args.n_jobs,
        profile=not args.no_profile,
        descriptive_region=args.descriptive_region,
        ci_level=args.ci_level,
    )

    try:
        pipeline.run(args.data_path)
        sys.exit(0)

    except (AnalysisError, FileNotFoundError) as e:
        logger.error(f"Fatal error: {type(e).__name__}: {e}")
        sys.exit(2)


if __name__ == "__main__":
    main()
