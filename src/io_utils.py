import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from simulator import (
    Assignment,
    CategoricalLevels,
    CategoricalPredictor,
    ConfigurationError,
    ContinuousPredictor,
    Interaction,
    LinearModelSpec,
    SamplingRule,
    make_coefficient,
    true_coefficients,
)


class DistributionSpec(BaseModel):
    # Family parameters (mean, sd, min, max, ...) are kept as extras.
    model_config = ConfigDict(extra="allow")

    family: str


class AssignmentSpec(BaseModel):
    scheme: str = "each"
    probabilities: Optional[List[float]] = None


class PredictorSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    kind: str
    distribution: Optional[DistributionSpec] = None
    coefficient: Optional[float] = None
    levels: Optional[List[str]] = None
    reference: Optional[str] = None
    assignment: AssignmentSpec = Field(default_factory=AssignmentSpec)
    coefficients: Optional[List[float]] = None


class InteractionSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    terms: List[str]
    coefficient: Optional[float] = None
    coefficients: Optional[List[float]] = None


class SimulationSpec(BaseModel):
    response: str = "y"
    intercept: float
    residual_sd: float
    predictors: List[PredictorSpec] = Field(default_factory=list)
    interactions: List[InteractionSpec] = Field(default_factory=list)


class GlobalParameters(BaseModel):
    sample_size: int = Field(gt=0)
    seed: Optional[int] = None
    n_repeats: int = Field(default=200, gt=0)


def load_spec(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Spec file not found: {p.resolve()}")
    with p.open("r", encoding="utf-8") as f:
        return json.load(f)


def _build_predictor(p: PredictorSpec):
    if p.kind == "continuous":
        if p.distribution is None:
            raise ConfigurationError(f"Predictor '{p.name}' is continuous and needs a 'distribution'.")
        if p.coefficients is not None or p.levels is not None:
            raise ConfigurationError(
                f"Predictor '{p.name}' is continuous; use 'coefficient', not 'levels'/'coefficients'."
            )
        params = dict(p.distribution.model_extra or {})
        rule = SamplingRule(family=p.distribution.family, params=params)
        coef = make_coefficient(["continuous"], 0.0 if p.coefficient is None else p.coefficient)
        return ContinuousPredictor(name=p.name, rule=rule, coefficient=coef)

    if p.kind == "categorical":
        if p.levels is None:
            raise ConfigurationError(f"Predictor '{p.name}' is categorical and needs 'levels'.")
        if p.reference is None:
            raise ConfigurationError(
                f"Predictor '{p.name}' must declare its 'reference' level explicitly."
            )
        if p.coefficients is None:
            raise ConfigurationError(f"Predictor '{p.name}' is categorical and needs 'coefficients'.")
        if p.coefficient is not None or p.distribution is not None:
            raise ConfigurationError(
                f"Predictor '{p.name}' is categorical; use 'coefficients', not 'coefficient'/'distribution'."
            )
        probs = p.assignment.probabilities
        return CategoricalPredictor(
            name=p.name,
            levels=CategoricalLevels(labels=tuple(p.levels), reference=p.reference),
            coefficient=make_coefficient(["categorical"], p.coefficients),
            assignment=Assignment(
                scheme=p.assignment.scheme,
                probabilities=None if probs is None else tuple(probs),
            ),
        )

    raise ConfigurationError(
        f"Predictor '{p.name}' has unknown kind '{p.kind}'. Expected 'continuous' or 'categorical'."
    )


def _build_interaction(inter: InteractionSpec, kinds_by_name: Dict[str, str]) -> Interaction:
    label = ":".join(inter.terms)
    missing = [t for t in inter.terms if t not in kinds_by_name]
    if missing:
        raise ConfigurationError(
            f"Interaction '{label}' uses predictor(s) {missing} which are not declared."
        )
    if (inter.coefficient is None) == (inter.coefficients is None):
        raise ConfigurationError(
            f"Interaction '{label}' needs exactly one of 'coefficient' or 'coefficients'."
        )
    value: Union[float, List[float]] = (
        inter.coefficient if inter.coefficient is not None else inter.coefficients
    )
    kinds = [kinds_by_name[t] for t in inter.terms]
    return Interaction(terms=tuple(inter.terms), coefficient=make_coefficient(kinds, value))


def validate_spec(spec: Dict[str, Any]) -> LinearModelSpec:
    """
    Expected structure (flexible):
      spec["simulation_spec"] -> model definition, or the model definition itself
      model: {"intercept", "residual_sd", "response", "predictors": [...], "interactions": [...]}
    Returns a LinearModelSpec. Sample-size dependent checks run in simulator.validate_model.
    """
    if "simulation_spec" in spec:
        raw = spec["simulation_spec"]
    elif "intercept" in spec:
        raw = spec
    else:
        raise ValueError("Spec must contain either spec['simulation_spec'] or a model definition with 'intercept'.")

    try:
        parsed = SimulationSpec.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid simulation spec:\n{exc}") from exc

    names = [p.name for p in parsed.predictors]
    if len(names) != len(set(names)):
        raise ConfigurationError("Duplicate predictor names detected.")

    predictors = tuple(_build_predictor(p) for p in parsed.predictors)
    kinds_by_name = {p.name: p.kind for p in predictors}
    interactions = tuple(_build_interaction(i, kinds_by_name) for i in parsed.interactions)

    return LinearModelSpec(
        intercept=parsed.intercept,
        residual_sd=parsed.residual_sd,
        predictors=predictors,
        interactions=interactions,
        response=parsed.response,
    )


def load_global_parameters(path: str) -> GlobalParameters:
    raw = load_spec(path)
    try:
        return GlobalParameters.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid global parameters:\n{exc}") from exc


def spec_to_metadata(model: LinearModelSpec) -> Dict[str, Any]:
    predictors = []
    for p in model.predictors:
        item: Dict[str, Any] = {"name": p.name, "kind": p.kind}
        if p.kind == "continuous":
            item["distribution"] = {"family": p.rule.family, **p.rule.params}
            item["coefficient"] = float(p.coefficient.value)
        else:
            item["levels"] = list(p.levels.labels)
            item["reference"] = p.levels.reference
            item["design_columns"] = list(p.levels.columns)
            item["coefficients"] = p.coefficient.values.tolist()
            item["assignment"] = p.assignment.scheme
        predictors.append(item)

    return {
        "response": model.response,
        "intercept": float(model.intercept),
        "residual_sd": float(model.residual_sd),
        "predictors": predictors,
        "interactions": [
            {"terms": list(i.terms), "coefficients": i.coefficient.values.tolist()}
            for i in model.interactions
        ],
        "true_coefficients": true_coefficients(model),
    }
