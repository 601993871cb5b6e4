from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Any, List, Tuple, Optional, Sequence, Union
import logging
import math
import numbers
import numpy as np
import pandas as pd


logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Malformed model definition (shapes, names, references)."""


class DomainError(ValueError):
    """Invalid numeric parameter passed to a sampling rule."""


_RULE_PARAMS = {
    "normal": ("mean", "sd"),
    "uniform": ("min", "max"),
    "lognormal": ("meanlog", "sdlog"),
    "poisson": ("lam",),
}

_ASSIGNMENT_SCHEMES = ("each", "times", "random")


@dataclass(frozen=True)
class SamplingRule:
    family: str
    params: Dict[str, float] = field(default_factory=dict)

    def validate(self, owner: str = "") -> None:
        label = f"Predictor '{owner}': " if owner else ""
        if self.family not in _RULE_PARAMS:
            raise DomainError(
                f"{label}unknown distribution family '{self.family}'. "
                f"Expected one of {sorted(_RULE_PARAMS)}."
            )
        for key in _RULE_PARAMS[self.family]:
            if key not in self.params:
                raise DomainError(f"{label}{self.family} rule is missing parameter '{key}'.")
            value = self.params[key]
            if isinstance(value, bool) or not isinstance(value, numbers.Real) or not math.isfinite(value):
                raise DomainError(f"{label}{self.family} parameter '{key}' must be a finite number.")

        p = self.params
        if self.family == "normal" and p["sd"] < 0:
            raise DomainError(f"{label}normal sd must be >= 0, got {p['sd']}.")
        if self.family == "lognormal" and p["sdlog"] < 0:
            raise DomainError(f"{label}lognormal sdlog must be >= 0, got {p['sdlog']}.")
        if self.family == "uniform" and p["min"] > p["max"]:
            raise DomainError(f"{label}uniform min ({p['min']}) exceeds max ({p['max']}).")
        if self.family == "poisson" and p["lam"] < 0:
            raise DomainError(f"{label}poisson lam must be >= 0, got {p['lam']}.")

    def sample(self, n: int, rng: np.random.Generator) -> np.ndarray:
        self.validate()
        p = self.params
        if self.family == "normal":
            return rng.normal(p["mean"], p["sd"], size=n)
        if self.family == "uniform":
            return rng.uniform(p["min"], p["max"], size=n)
        if self.family == "lognormal":
            return rng.lognormal(p["meanlog"], p["sdlog"], size=n)
        return rng.poisson(p["lam"], size=n).astype(float)


@dataclass(frozen=True)
class CategoricalLevels:
    labels: Tuple[str, ...]
    reference: str

    @property
    def columns(self) -> Tuple[str, ...]:
        """Design column order: reference first, then the others as declared."""
        return (self.reference,) + tuple(l for l in self.labels if l != self.reference)

    @property
    def k(self) -> int:
        return len(self.labels)


@dataclass(frozen=True)
class Assignment:
    scheme: str = "each"
    probabilities: Optional[Tuple[float, ...]] = None


# ---------------------------------------------------------------------------
# Coefficients
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScalarCoefficient:
    value: float

    @property
    def values(self) -> np.ndarray:
        return np.array([float(self.value)])

    @property
    def width(self) -> int:
        return 1

    def contribution(self, design: np.ndarray) -> np.ndarray:
        return design[:, 0] * float(self.value)


@dataclass(frozen=True)
class PerCategoryCoefficient:
    entries: Tuple[float, ...]

    @property
    def values(self) -> np.ndarray:
        return np.asarray(self.entries, dtype=float)

    @property
    def width(self) -> int:
        return len(self.entries)

    def contribution(self, design: np.ndarray) -> np.ndarray:
        return design @ self.values


@dataclass(frozen=True)
class PerCombinationCoefficient(PerCategoryCoefficient):
    pass


Coefficient = Union[ScalarCoefficient, PerCategoryCoefficient, PerCombinationCoefficient]


# ---------------------------------------------------------------------------
# Predictors and terms
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContinuousPredictor:
    name: str
    rule: SamplingRule
    coefficient: ScalarCoefficient = ScalarCoefficient(0.0)

    kind = "continuous"

    def draw(self, n: int, rng: np.random.Generator) -> np.ndarray:
        return self.rule.sample(n, rng)


@dataclass(frozen=True)
class CategoricalPredictor:
    name: str
    levels: CategoricalLevels
    coefficient: PerCategoryCoefficient
    assignment: Assignment = Assignment()

    kind = "categorical"

    def assign(self, n: int, rng: np.random.Generator) -> np.ndarray:
        labels = np.array(self.levels.labels, dtype=object)
        k = self.levels.k
        scheme = self.assignment.scheme
        if scheme == "each":
            return np.repeat(labels, n // k)
        if scheme == "times":
            return np.tile(labels, n // k)
        probs = self.assignment.probabilities
        idx = rng.choice(k, size=n, p=None if probs is None else np.asarray(probs, dtype=float))
        return labels[idx]

    def draw(self, n: int, rng: np.random.Generator) -> np.ndarray:
        return self.assign(n, rng)


Predictor = Union[ContinuousPredictor, CategoricalPredictor]


@dataclass(frozen=True)
class Interaction:
    terms: Tuple[str, ...]
    coefficient: Coefficient

    @property
    def name(self) -> str:
        return ":".join(self.terms)


@dataclass(frozen=True)
class LinearModelSpec:
    intercept: float
    residual_sd: float
    predictors: Tuple[Predictor, ...] = ()
    interactions: Tuple[Interaction, ...] = ()
    response: str = "y"

    def predictor(self, name: str) -> Predictor:
        for p in self.predictors:
            if p.name == name:
                return p
        raise ConfigurationError(f"Predictor '{name}' is not declared.")


def make_coefficient(kinds: Sequence[str], value: Any) -> Coefficient:
    """
    Pick the coefficient variant from the kinds of the participating terms.

    A single continuous term, or any all-continuous interaction, takes a scalar.
    A single categorical term takes one entry per category; anything mixing in
    a categorical takes one entry per combination of design columns.
    """
    if all(kind == "continuous" for kind in kinds):
        if isinstance(value, (list, tuple, np.ndarray)):
            if len(value) != 1:
                raise ConfigurationError(
                    f"Continuous term expects a scalar coefficient, got {len(value)} entries."
                )
            value = value[0]
        return ScalarCoefficient(float(value))

    if not isinstance(value, (list, tuple, np.ndarray)):
        raise ConfigurationError("Categorical terms expect a list of coefficients, got a scalar.")
    entries = tuple(float(v) for v in value)
    if len(kinds) == 1:
        return PerCategoryCoefficient(entries)
    return PerCombinationCoefficient(entries)


# ---------------------------------------------------------------------------
# Design matrices
# ---------------------------------------------------------------------------


@dataclass
class DesignMatrix:
    term: str
    columns: List[str]
    values: np.ndarray       # n x len(columns)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape


def indicator_matrix(labels: np.ndarray, columns: Sequence[str]) -> np.ndarray:
    labels = np.asarray(labels, dtype=object)
    return (labels[:, None] == np.asarray(columns, dtype=object)[None, :]).astype(float)


def interaction_matrix(matrices: Sequence[np.ndarray]) -> np.ndarray:
    """
    Row-wise product of every column of each participating matrix.

    The first matrix varies slowest, so for A (a columns) and B (b columns)
    column i * b + j holds A[:, i] * B[:, j].
    """
    if not matrices:
        raise ConfigurationError("Interaction requires at least one matrix.")
    out = np.asarray(matrices[0], dtype=float)
    for mat in matrices[1:]:
        mat = np.asarray(mat, dtype=float)
        n = out.shape[0]
        out = (out[:, :, None] * mat[:, None, :]).reshape(n, -1)
    return out


def interaction_columns(column_sets: Sequence[Sequence[str]]) -> List[str]:
    names = [""]
    for cols in column_sets:
        names = [f"{prefix}:{c}" if prefix else c for prefix in names for c in cols]
    return names


def term_columns(predictor: Predictor) -> List[str]:
    if predictor.kind == "continuous":
        return [predictor.name]
    return [f"{predictor.name}[{lvl}]" for lvl in predictor.levels.columns]


def treatment_columns(predictor: Predictor) -> List[str]:
    """Column names as a treatment-coded fit reports them (reference included here)."""
    if predictor.kind == "continuous":
        return [predictor.name]
    return [f"{predictor.name}[T.{lvl}]" for lvl in predictor.levels.columns]


def _term_width(predictor: Predictor) -> int:
    return 1 if predictor.kind == "continuous" else predictor.levels.k


def _reference_mask(spec: LinearModelSpec, interaction: Interaction) -> np.ndarray:
    """True for every interaction column that involves a reference level."""
    mask = np.zeros(1, dtype=bool)
    for name in interaction.terms:
        pred = spec.predictor(name)
        if pred.kind == "continuous":
            col = np.zeros(1, dtype=bool)
        else:
            col = np.zeros(pred.levels.k, dtype=bool)
            col[0] = True
        mask = (mask[:, None] | col[None, :]).reshape(-1)
    return mask


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _check_finite(owner: str, coef: Coefficient) -> None:
    if not np.all(np.isfinite(coef.values)):
        raise ConfigurationError(f"{owner} coefficients must be finite, got {coef.values.tolist()}.")


def _validate_categorical(pred: CategoricalPredictor, n: int) -> None:
    levels = pred.levels
    if levels.k == 0:
        raise ConfigurationError(f"Predictor '{pred.name}' has an empty category list.")
    if any(not isinstance(l, str) or l == "" for l in levels.labels):
        raise ConfigurationError(f"Predictor '{pred.name}' has an empty or non-string category label.")
    if len(set(levels.labels)) != levels.k:
        raise ConfigurationError(f"Predictor '{pred.name}' has duplicate category labels.")
    if levels.reference not in levels.labels:
        raise ConfigurationError(
            f"Predictor '{pred.name}' reference '{levels.reference}' is not one of its categories."
        )

    coef = pred.coefficient
    if type(coef) is not PerCategoryCoefficient:
        raise ConfigurationError(f"Predictor '{pred.name}' needs one coefficient per category.")
    if coef.width != levels.k:
        raise ConfigurationError(
            f"Predictor '{pred.name}' has {coef.width} coefficients for {levels.k} categories."
        )
    _check_finite(f"Predictor '{pred.name}'", coef)
    if coef.values[0] != 0:
        raise ConfigurationError(
            f"Predictor '{pred.name}' reference '{levels.reference}' must have coefficient 0, "
            f"got {coef.values[0]}."
        )

    scheme = pred.assignment.scheme
    if scheme not in _ASSIGNMENT_SCHEMES:
        raise ConfigurationError(
            f"Predictor '{pred.name}' has unknown assignment scheme '{scheme}'. "
            f"Expected one of {list(_ASSIGNMENT_SCHEMES)}."
        )
    if scheme in ("each", "times") and n % levels.k != 0:
        raise ConfigurationError(
            f"Predictor '{pred.name}': sample size {n} is not divisible by {levels.k} categories "
            f"for '{scheme}' assignment."
        )
    probs = pred.assignment.probabilities
    if probs is not None:
        if scheme != "random":
            raise ConfigurationError(f"Predictor '{pred.name}': probabilities only apply to 'random' assignment.")
        p = np.asarray(probs, dtype=float)
        if len(p) != levels.k:
            raise ConfigurationError(
                f"Predictor '{pred.name}' has {len(p)} probabilities for {levels.k} categories."
            )
        if not np.all(np.isfinite(p)) or np.any(p < 0) or abs(float(p.sum()) - 1.0) > 1e-9:
            raise ConfigurationError(
                f"Predictor '{pred.name}' probabilities must be non-negative and sum to 1."
            )


def _validate_interaction(spec: LinearModelSpec, inter: Interaction, declared: Dict[str, Predictor]) -> None:
    if len(inter.terms) < 2:
        raise ConfigurationError(f"Interaction '{inter.name}' needs at least two terms.")
    if len(set(inter.terms)) != len(inter.terms):
        raise ConfigurationError(f"Interaction '{inter.name}' repeats a term.")
    for term in inter.terms:
        if term not in declared:
            raise ConfigurationError(
                f"Interaction '{inter.name}' uses predictor '{term}' which is not declared."
            )

    kinds = [declared[t].kind for t in inter.terms]
    width = int(np.prod([_term_width(declared[t]) for t in inter.terms]))
    coef = inter.coefficient
    if all(kind == "continuous" for kind in kinds):
        if not isinstance(coef, ScalarCoefficient):
            raise ConfigurationError(f"Interaction '{inter.name}' is continuous-only and takes a scalar coefficient.")
        _check_finite(f"Interaction '{inter.name}'", coef)
        return

    if not isinstance(coef, PerCombinationCoefficient):
        raise ConfigurationError(
            f"Interaction '{inter.name}' involves a categorical predictor and needs one coefficient per combination."
        )
    if coef.width != width:
        raise ConfigurationError(
            f"Interaction '{inter.name}' has {coef.width} coefficients for {width} design columns."
        )
    _check_finite(f"Interaction '{inter.name}'", coef)
    ref_mask = _reference_mask(spec, inter)
    if np.any(coef.values[ref_mask] != 0):
        raise ConfigurationError(
            f"Interaction '{inter.name}' must have coefficient 0 for every combination involving a reference level."
        )


def validate_model(spec: LinearModelSpec, n: int) -> None:
    """Reject a bad configuration before anything is sampled."""
    if isinstance(n, bool) or not isinstance(n, (int, np.integer)) or n <= 0:
        raise ConfigurationError(f"Sample size must be a positive integer, got {n!r}.")
    sd = spec.residual_sd
    if isinstance(sd, bool) or not isinstance(sd, numbers.Real) or not math.isfinite(sd) or sd < 0:
        raise ConfigurationError(f"residual_sd must be a finite number >= 0, got {sd!r}.")
    if not math.isfinite(float(spec.intercept)):
        raise ConfigurationError("intercept must be finite.")

    declared: Dict[str, Predictor] = {}
    for pred in spec.predictors:
        if not pred.name:
            raise ConfigurationError("Each predictor must have a 'name'.")
        if pred.name in declared:
            raise ConfigurationError(f"Duplicate predictor name '{pred.name}'.")
        declared[pred.name] = pred
        if pred.kind == "continuous":
            if not isinstance(pred.coefficient, ScalarCoefficient):
                raise ConfigurationError(f"Predictor '{pred.name}' is continuous and takes a scalar coefficient.")
            _check_finite(f"Predictor '{pred.name}'", pred.coefficient)
            pred.rule.validate(pred.name)
        else:
            _validate_categorical(pred, n)

    if spec.response in declared:
        raise ConfigurationError(f"Response name '{spec.response}' clashes with a predictor.")

    seen = set()
    for inter in spec.interactions:
        _validate_interaction(spec, inter, declared)
        key = frozenset(inter.terms)
        if key in seen:
            raise ConfigurationError(f"Interaction '{inter.name}' is declared more than once.")
        seen.add(key)


# ---------------------------------------------------------------------------
# Simulation
# ---------------------------------------------------------------------------


def make_rng(seed: Optional[int] = None) -> np.random.Generator:
    return np.random.default_rng(seed)


def draw_predictors(spec: LinearModelSpec, n: int, rng: np.random.Generator) -> Dict[str, np.ndarray]:
    return {pred.name: pred.draw(n, rng) for pred in spec.predictors}


def _main_effect_design(pred: Predictor, values: np.ndarray) -> DesignMatrix:
    if pred.kind == "continuous":
        mat = np.asarray(values, dtype=float).reshape(-1, 1)
    else:
        mat = indicator_matrix(values, pred.levels.columns)
    return DesignMatrix(term=pred.name, columns=term_columns(pred), values=mat)


def build_design(spec: LinearModelSpec, values: Dict[str, np.ndarray]) -> Dict[str, DesignMatrix]:
    design: Dict[str, DesignMatrix] = {}
    for pred in spec.predictors:
        design[pred.name] = _main_effect_design(pred, values[pred.name])

    for inter in spec.interactions:
        parts = [design[t] for t in inter.terms]
        design[inter.name] = DesignMatrix(
            term=inter.name,
            columns=interaction_columns([p.columns for p in parts]),
            values=interaction_matrix([p.values for p in parts]),
        )
    return design


def linear_predictor(spec: LinearModelSpec, design: Dict[str, DesignMatrix], n: int) -> np.ndarray:
    terms: List[Tuple[str, Coefficient]] = [(p.name, p.coefficient) for p in spec.predictors]
    terms += [(i.name, i.coefficient) for i in spec.interactions]

    mu = np.full(n, float(spec.intercept))
    for name, coef in terms:
        mat = design[name]
        if mat.shape[1] != coef.width:
            raise ConfigurationError(
                f"Term '{name}' has {mat.shape[1]} design columns but {coef.width} coefficients."
            )
        mu = mu + coef.contribution(mat.values)
    return mu


def simulate_response(mu: np.ndarray, residual_sd: float, rng: np.random.Generator) -> np.ndarray:
    if residual_sd < 0:
        raise DomainError(f"residual_sd must be >= 0, got {residual_sd}.")
    if residual_sd == 0:
        return np.array(mu, dtype=float, copy=True)
    return rng.normal(mu, residual_sd, size=len(mu))


@dataclass
class SimulatedDataset:
    data: pd.DataFrame
    mu: np.ndarray
    design: Dict[str, DesignMatrix]
    spec: LinearModelSpec

    @property
    def n(self) -> int:
        return len(self.data)

    @property
    def response(self) -> np.ndarray:
        return self.data[self.spec.response].to_numpy()

    def to_frame(self, include_mean: bool = False) -> pd.DataFrame:
        df = self.data.copy()
        if include_mean:
            df[f"{self.spec.response}_mean"] = self.mu
        return df


def simulate_dataset(spec: LinearModelSpec, n: int, rng: np.random.Generator) -> SimulatedDataset:
    """
    Simulate one dataset from a declared linear model.

    Steps:
      1) Validate the whole configuration (no draws on failure).
      2) Draw every predictor independently, in declared order.
      3) Build indicator / interaction design matrices.
      4) mu = intercept + sum of coefficient . representation over all terms.
      5) y ~ Normal(mu, residual_sd), one draw per row.
    """
    validate_model(spec, n)

    values = draw_predictors(spec, n, rng)
    design = build_design(spec, values)
    mu = linear_predictor(spec, design, n)
    y = simulate_response(mu, spec.residual_sd, rng)

    columns: Dict[str, Any] = {}
    for pred in spec.predictors:
        if pred.kind == "categorical":
            columns[pred.name] = pd.Categorical(values[pred.name], categories=list(pred.levels.columns))
        else:
            columns[pred.name] = values[pred.name]
    columns[spec.response] = y
    data = pd.DataFrame(columns)

    logger.debug(
        "Simulated %d rows for %d predictors and %d interactions (residual_sd=%s).",
        n, len(spec.predictors), len(spec.interactions), spec.residual_sd,
    )
    return SimulatedDataset(data=data, mu=mu, design=design, spec=spec)


def true_coefficients(spec: LinearModelSpec) -> Dict[str, float]:
    """
    Treatment-coded truth keyed the way fitting.treatment_design names columns.

    Reference columns are dropped; their coefficients are fixed at 0 and absorbed
    by the intercept and the lower-order terms.
    """
    truth: Dict[str, float] = {"Intercept": float(spec.intercept)}
    for pred in spec.predictors:
        vals = pred.coefficient.values
        if pred.kind == "continuous":
            truth[pred.name] = float(vals[0])
        else:
            for col, v in zip(treatment_columns(pred)[1:], vals[1:]):
                truth[col] = float(v)

    for inter in spec.interactions:
        preds = [spec.predictor(t) for t in inter.terms]
        full_cols = np.asarray(interaction_columns([treatment_columns(p) for p in preds]), dtype=object)
        keep = ~_reference_mask(spec, inter)
        for col, v in zip(full_cols[keep], inter.coefficient.values[keep]):
            truth[col] = float(v)
    return truth
