from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
import logging
import numpy as np
import pandas as pd

from scipy.stats import t as t_dist
from sklearn.linear_model import LinearRegression
from sklearn.preprocessing import OneHotEncoder

from simulator import (
    LinearModelSpec,
    interaction_columns,
    interaction_matrix,
    simulate_dataset,
)


logger = logging.getLogger(__name__)


@dataclass
class LinearFit:
    coefficients: pd.DataFrame   # index: term; estimate, std_error, t_value, p_value
    residual_sd: float
    df_resid: int
    n_obs: int

    @property
    def estimates(self) -> pd.Series:
        return self.coefficients["estimate"]


def _is_categorical(series: pd.Series) -> bool:
    return isinstance(series.dtype, pd.CategoricalDtype) or series.dtype == object or pd.api.types.is_string_dtype(series.dtype)


def _levels_for(series: pd.Series, reference: Optional[str]) -> List[str]:
    """
    Level order with the reference first.

    Without an override the reference is the first category of a Categorical
    column, otherwise the lexicographically smallest label, which is what
    formula-based fitting tools pick.
    """
    if isinstance(series.dtype, pd.CategoricalDtype):
        levels = [str(c) for c in series.cat.categories]
    else:
        levels = sorted(str(v) for v in series.dropna().unique())
    if reference is None:
        return levels
    if reference not in levels:
        raise ValueError(f"Reference '{reference}' not found among levels of '{series.name}': {levels}.")
    return [reference] + [lvl for lvl in levels if lvl != reference]


def _term_block(
    data: pd.DataFrame,
    name: str,
    references: Dict[str, str],
) -> Tuple[List[str], np.ndarray]:
    if name not in data.columns:
        raise ValueError(f"Column '{name}' not found in dataset.")
    series = data[name]
    if not _is_categorical(series):
        return [name], series.to_numpy(dtype=float).reshape(-1, 1)

    levels = _levels_for(series, references.get(name))
    encoder = OneHotEncoder(categories=[levels], drop="first", sparse_output=False)
    values = encoder.fit_transform(series.astype(str).to_frame())
    return [f"{name}[T.{lvl}]" for lvl in levels[1:]], values


def treatment_design(
    data: pd.DataFrame,
    main_effects: Sequence[str],
    interactions: Sequence[Sequence[str]] = (),
    references: Optional[Dict[str, str]] = None,
) -> pd.DataFrame:
    """
    Treatment-coded design matrix: Intercept, main effects, then interactions.

    Interaction columns are row-wise products of the participating blocks with
    the reference columns already dropped.
    """
    references = dict(references or {})
    blocks: Dict[str, Tuple[List[str], np.ndarray]] = {}
    for name in list(main_effects) + [t for inter in interactions for t in inter]:
        if name not in blocks:
            blocks[name] = _term_block(data, name, references)

    columns = ["Intercept"]
    parts = [np.ones((len(data), 1))]
    for name in main_effects:
        cols, vals = blocks[name]
        columns += cols
        parts.append(vals)
    for inter in interactions:
        inter = list(inter)
        if len(inter) < 2:
            raise ValueError(f"Interaction {inter} needs at least two terms.")
        columns += interaction_columns([blocks[t][0] for t in inter])
        parts.append(interaction_matrix([blocks[t][1] for t in inter]))

    return pd.DataFrame(np.hstack(parts), columns=columns, index=data.index)


def fit_linear_model(
    data: pd.DataFrame,
    response: str,
    main_effects: Sequence[str],
    interactions: Sequence[Sequence[str]] = (),
    references: Optional[Dict[str, str]] = None,
) -> LinearFit:
    if response not in data.columns:
        raise ValueError(f"Response column '{response}' not found in dataset.")

    X_df = treatment_design(data, main_effects, interactions, references)
    X = X_df.to_numpy()
    y = data[response].to_numpy(dtype=float)
    n, p = X.shape
    df_resid = n - p
    if df_resid <= 0:
        raise ValueError(f"Need more observations ({n}) than design columns ({p}) to estimate standard errors.")

    model = LinearRegression(fit_intercept=False)
    model.fit(X, y)
    coef = model.coef_.ravel()

    resid = y - X @ coef
    sigma2 = float(resid @ resid) / df_resid

    xtx = X.T @ X
    try:
        cov = sigma2 * np.linalg.inv(xtx)
    except np.linalg.LinAlgError:
        cov = sigma2 * np.linalg.pinv(xtx)

    se = np.sqrt(np.clip(np.diag(cov), 0.0, None))
    with np.errstate(divide="ignore", invalid="ignore"):
        t_values = coef / se
    p_values = 2 * t_dist.sf(np.abs(t_values), df_resid)

    table = pd.DataFrame(
        {
            "estimate": coef,
            "std_error": se,
            "t_value": t_values,
            "p_value": p_values,
        },
        index=pd.Index(X_df.columns, name="term"),
    )
    logger.debug("Fitted %d columns on %d rows (residual sd %.4f).", p, n, np.sqrt(sigma2))
    return LinearFit(coefficients=table, residual_sd=float(np.sqrt(sigma2)), df_resid=df_resid, n_obs=n)


def recovery_table(fit: LinearFit, truth: Dict[str, float]) -> pd.DataFrame:
    """
    Compare fitted coefficients against the values used to simulate.

    Terms that appear on only one side are kept with NaN so a relabelled or
    missing reference level shows up instead of being silently dropped.
    """
    true_s = pd.Series(truth, name="true", dtype=float)
    table = fit.coefficients[["estimate", "std_error"]].join(true_s, how="outer")
    table.index.name = "term"
    table["difference"] = table["estimate"] - table["true"]
    table["z"] = table["difference"] / table["std_error"]
    table["within_2se"] = table["z"].abs() <= 2.0
    return table[["true", "estimate", "difference", "std_error", "z", "within_2se"]]


def model_terms(spec: LinearModelSpec, omit_interactions: bool = False) -> Tuple[List[str], List[Tuple[str, ...]]]:
    main = [p.name for p in spec.predictors]
    inters = [] if omit_interactions else [tuple(i.terms) for i in spec.interactions]
    return main, inters


def repeat_recovery(
    spec: LinearModelSpec,
    n: int,
    n_repeats: int,
    seed: Optional[int] = None,
    omit_interactions: bool = False,
) -> pd.DataFrame:
    """
    Simulate and refit `n_repeats` times; one row of estimates per repeat.

    Each repeat draws from its own generator spawned from one SeedSequence,
    so the whole table is reproducible from `seed`.
    """
    if n_repeats <= 0:
        raise ValueError("n_repeats must be > 0.")

    main, inters = model_terms(spec, omit_interactions)
    rows = []
    for child in np.random.SeedSequence(seed).spawn(n_repeats):
        rng = np.random.default_rng(child)
        dataset = simulate_dataset(spec, n, rng)
        fit = fit_linear_model(dataset.data, spec.response, main, inters)
        rows.append(fit.estimates)

    estimates = pd.DataFrame(rows).reset_index(drop=True)
    estimates.index.name = "repeat"
    return estimates


def summarise_repeats(estimates: pd.DataFrame, truth: Dict[str, float]) -> pd.DataFrame:
    summary = pd.DataFrame(
        {
            "mean_estimate": estimates.mean(),
            "sd_estimate": estimates.std(ddof=1),
        }
    )
    summary = summary.join(pd.Series(truth, name="true", dtype=float), how="left")
    summary["bias"] = summary["mean_estimate"] - summary["true"]
    summary["n_repeats"] = len(estimates)
    summary.index.name = "term"
    return summary[["true", "mean_estimate", "sd_estimate", "bias", "n_repeats"]]
