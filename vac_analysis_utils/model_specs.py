"""
Model specification registry

Declares the fixed 8-model escalation used for every response variable.
Specs are plain values; the fitting engine turns them into patsy and
statsmodels arguments.
"""

from dataclasses import dataclass, field
from typing import Dict, Tuple

STRENGTH = "strength_code"
PROFICIENCY = "EIT_score"
CONSTRUCTION = "C(VAC_type)"
THREE_WAY = (STRENGTH, PROFICIENCY, CONSTRUCTION)

GROUPING_FACTORS = ("subject", "item")


@dataclass(frozen=True)
class RandomEffect:
    """Random intercept (and optional slopes) for one grouping factor"""

    grouping_factor: str
    slopes: Tuple[str, ...] = ()
    intercept: bool = True

    def __post_init__(self):
        if self.grouping_factor not in GROUPING_FACTORS:
            raise ValueError(f"Unknown grouping factor: {self.grouping_factor}")

    def components(self) -> Dict[str, str]:
        """Variance components as {name: patsy formula}"""
        g = self.grouping_factor
        comps = {}
        if self.intercept:
            comps[g] = f"0 + C({g})"
        for slope in self.slopes:
            comps[f"{g}:{slope}"] = f"0 + C({g}):{slope}"
        return comps

    def describe(self) -> str:
        terms = (["1"] if self.intercept else ["0"]) + list(self.slopes)
        return f"({' + '.join(terms)} | {self.grouping_factor})"


@dataclass(frozen=True)
class ModelSpec:
    """
    One model in the escalation

    ``fixed_effects`` holds predictor terms (empty = intercept only); a
    tuple of names stands for their interaction.
    """

    spec_id: int
    response: str
    fixed_effects: Tuple = ()
    random_effects: Tuple[RandomEffect, ...] = field(default_factory=tuple)

    def fixed_terms(self) -> Tuple[str, ...]:
        return tuple(
            ":".join(term) if isinstance(term, tuple) else term
            for term in self.fixed_effects
        )

    def fixed_formula(self) -> str:
        rhs = " + ".join(self.fixed_terms()) or "1"
        return f"{self.response} ~ {rhs}"

    def vc_formula(self) -> Dict[str, str]:
        comps = {}
        for effect in self.random_effects:
            comps.update(effect.components())
        return comps

    def grouping_factors(self) -> Tuple[str, ...]:
        return tuple(dict.fromkeys(effect.grouping_factor for effect in self.random_effects))

    def n_variance_components(self) -> int:
        return len(self.vc_formula())

    def variance_covariates(self) -> Dict[str, str]:
        """Variance component name -> covariate it scales (None for intercepts)"""
        covariates = {}
        for effect in self.random_effects:
            if effect.intercept:
                covariates[effect.grouping_factor] = None
            for slope in effect.slopes:
                covariates[f"{effect.grouping_factor}:{slope}"] = slope
        return covariates

    def describe(self) -> str:
        """lme4-style label, e.g. ``y ~ strength_code + (1 | subject)``"""
        random = " + ".join(effect.describe() for effect in self.random_effects)
        return f"{self.fixed_formula()} + {random}"


def build_sequence(response_var: str) -> Tuple[ModelSpec, ...]:
    """
    Build the 8 nested specifications for one response variable

    Each model adds one fixed effect, one random intercept or one random
    slope to the previous one; model 8 adds the three-way interaction.
    The shape does not depend on the response.
    """
    subj = RandomEffect("subject")
    item = RandomEffect("item")
    subj_slope = RandomEffect("subject", slopes=(STRENGTH,))
    item_slope = RandomEffect("item", slopes=(STRENGTH,))

    main_effects = (STRENGTH, PROFICIENCY, CONSTRUCTION)

    steps = [
        ((), (subj,)),
        (main_effects[:1], (subj,)),
        (main_effects[:2], (subj,)),
        (main_effects, (subj,)),
        (main_effects, (subj, item)),
        (main_effects, (subj_slope, item)),
        (main_effects, (subj_slope, item_slope)),
        (main_effects + (THREE_WAY,), (subj_slope, item_slope)),
    ]

    return tuple(
        ModelSpec(
            spec_id=i,
            response=response_var,
            fixed_effects=fixed,
            random_effects=random,
        )
        for i, (fixed, random) in enumerate(steps, start=1)
    )
