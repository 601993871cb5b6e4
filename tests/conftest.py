import importlib.util
import json
import sys
from pathlib import Path
from uuid import uuid4

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from simulator import (
    Assignment,
    CategoricalLevels,
    CategoricalPredictor,
    ContinuousPredictor,
    Interaction,
    LinearModelSpec,
    PerCategoryCoefficient,
    PerCombinationCoefficient,
    SamplingRule,
    ScalarCoefficient,
)


def load_module(module_path: Path):
    spec = importlib.util.spec_from_file_location(f"testmod_{uuid4().hex}", module_path)
    module = importlib.util.module_from_spec(spec)
    assert spec and spec.loader
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def length_predictor() -> ContinuousPredictor:
    return ContinuousPredictor(
        name="length",
        rule=SamplingRule("normal", {"mean": 48.0, "sd": 3.0}),
        coefficient=ScalarCoefficient(2.0),
    )


@pytest.fixture
def diet_predictor() -> CategoricalPredictor:
    return CategoricalPredictor(
        name="diet",
        levels=CategoricalLevels(labels=("control", "high_fat", "low_fat"), reference="control"),
        coefficient=PerCategoryCoefficient((0.0, 30.0, -10.0)),
        assignment=Assignment("each"),
    )


@pytest.fixture
def continuous_spec(length_predictor) -> LinearModelSpec:
    return LinearModelSpec(
        intercept=175.0,
        residual_sd=20.0,
        predictors=(length_predictor,),
        response="weight",
    )


@pytest.fixture
def diet_spec(diet_predictor) -> LinearModelSpec:
    return LinearModelSpec(
        intercept=175.0,
        residual_sd=20.0,
        predictors=(diet_predictor,),
        response="weight",
    )


@pytest.fixture
def interaction_spec() -> LinearModelSpec:
    # Group slopes differ by 5 and x is far from 0, so the main effect of
    # group is badly biased when the interaction is left out.
    x = ContinuousPredictor(
        name="x",
        rule=SamplingRule("normal", {"mean": 10.0, "sd": 2.0}),
        coefficient=ScalarCoefficient(1.0),
    )
    group = CategoricalPredictor(
        name="group",
        levels=CategoricalLevels(labels=("a", "b"), reference="a"),
        coefficient=PerCategoryCoefficient((0.0, 3.0)),
        assignment=Assignment("times"),
    )
    return LinearModelSpec(
        intercept=10.0,
        residual_sd=2.0,
        predictors=(x, group),
        interactions=(Interaction(("x", "group"), PerCombinationCoefficient((0.0, 5.0))),),
        response="y",
    )


@pytest.fixture
def simulation_config() -> dict:
    return {
        "simulation_spec": {
            "response": "weight",
            "intercept": 175.0,
            "residual_sd": 20.0,
            "predictors": [
                {
                    "name": "length",
                    "kind": "continuous",
                    "distribution": {"family": "normal", "mean": 48.0, "sd": 3.0},
                    "coefficient": 2.0,
                },
                {
                    "name": "sex",
                    "kind": "categorical",
                    "levels": ["male", "female"],
                    "reference": "male",
                    "assignment": {"scheme": "times"},
                    "coefficients": [0.0, -20.0],
                },
            ],
            "interactions": [
                {"terms": ["length", "sex"], "coefficients": [0.0, 1.5]},
            ],
        }
    }


@pytest.fixture
def global_config() -> dict:
    return {"sample_size": 120, "seed": 7, "n_repeats": 20}


@pytest.fixture
def project_root() -> Path:
    return Path(__file__).resolve().parents[1]


@pytest.fixture
def write_json():
    def _write(path: Path, payload: dict) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")

    return _write
