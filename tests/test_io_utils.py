import copy
import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from io_utils import load_global_parameters, load_spec, spec_to_metadata, validate_spec
from simulator import (
    CategoricalPredictor,
    ConfigurationError,
    ContinuousPredictor,
    PerCombinationCoefficient,
    make_rng,
    simulate_dataset,
)


def test_load_spec_raises_for_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_spec(str(tmp_path / "missing.json"))


def test_validate_spec_builds_model(simulation_config: dict):
    model = validate_spec(simulation_config)

    assert model.response == "weight"
    assert isinstance(model.predictors[0], ContinuousPredictor)
    assert isinstance(model.predictors[1], CategoricalPredictor)
    assert model.predictors[0].rule.params == {"mean": 48.0, "sd": 3.0}
    assert model.predictors[1].levels.columns == ("male", "female")
    assert isinstance(model.interactions[0].coefficient, PerCombinationCoefficient)


def test_validate_spec_accepts_bare_model(simulation_config: dict):
    model = validate_spec(simulation_config["simulation_spec"])
    assert len(model.predictors) == 2


def test_validate_spec_requires_known_root():
    with pytest.raises(ValueError, match="simulation_spec"):
        validate_spec({"variables": []})


def test_validate_spec_requires_explicit_reference(simulation_config: dict):
    cfg = copy.deepcopy(simulation_config)
    del cfg["simulation_spec"]["predictors"][1]["reference"]
    with pytest.raises(ConfigurationError, match="'reference' level explicitly"):
        validate_spec(cfg)


def test_validate_spec_rejects_undeclared_interaction_term(simulation_config: dict):
    cfg = copy.deepcopy(simulation_config)
    cfg["simulation_spec"]["interactions"][0]["terms"] = ["length", "age"]
    with pytest.raises(ConfigurationError, match="not declared"):
        validate_spec(cfg)


def test_validate_spec_rejects_structural_errors(simulation_config: dict):
    cfg = copy.deepcopy(simulation_config)
    cfg["simulation_spec"]["residual_sd"] = "large"
    with pytest.raises(ValueError, match="Invalid simulation spec"):
        validate_spec(cfg)

    cfg = copy.deepcopy(simulation_config)
    cfg["simulation_spec"]["predictors"][0]["kind"] = "ordinal"
    with pytest.raises(ConfigurationError, match="unknown kind 'ordinal'"):
        validate_spec(cfg)

    cfg = copy.deepcopy(simulation_config)
    cfg["simulation_spec"]["predictors"].append(cfg["simulation_spec"]["predictors"][0])
    with pytest.raises(ConfigurationError, match="Duplicate predictor names"):
        validate_spec(cfg)


def test_validate_spec_rejects_ambiguous_interaction_coefficient(simulation_config: dict):
    cfg = copy.deepcopy(simulation_config)
    cfg["simulation_spec"]["interactions"][0]["coefficient"] = 1.0
    with pytest.raises(ConfigurationError, match="exactly one of"):
        validate_spec(cfg)


def test_wrong_length_coefficients_fail_before_sampling(simulation_config: dict):
    cfg = copy.deepcopy(simulation_config)
    cfg["simulation_spec"]["interactions"][0]["coefficients"] = [0.0, 1.5, 2.0]
    model = validate_spec(cfg)
    with pytest.raises(ConfigurationError, match="3 coefficients for 2 design columns"):
        simulate_dataset(model, n=60, rng=make_rng(0))


def test_validate_spec_rejects_scalar_coefficient_on_categorical(simulation_config: dict):
    cfg = copy.deepcopy(simulation_config)
    cfg["simulation_spec"]["predictors"][1]["coefficient"] = 5.0
    with pytest.raises(ConfigurationError, match="use 'coefficients', not 'coefficient'"):
        validate_spec(cfg)


def test_nan_slope_fails_before_sampling(simulation_config: dict):
    cfg = copy.deepcopy(simulation_config)
    cfg["simulation_spec"]["predictors"][0]["coefficient"] = float("nan")
    model = validate_spec(cfg)
    rng = make_rng(0)
    state = rng.bit_generator.state
    with pytest.raises(ConfigurationError, match="Predictor 'length' coefficients must be finite"):
        simulate_dataset(model, n=60, rng=rng)
    assert rng.bit_generator.state == state


def test_load_global_parameters(tmp_path: Path, write_json, global_config: dict):
    path = tmp_path / "global.json"
    write_json(path, global_config)
    params = load_global_parameters(str(path))
    assert params.sample_size == 120
    assert params.seed == 7

    write_json(path, {"sample_size": -1})
    with pytest.raises(ValueError, match="Invalid global parameters"):
        load_global_parameters(str(path))


def test_spec_to_metadata_is_json_ready(simulation_config: dict):
    meta = spec_to_metadata(validate_spec(simulation_config))
    json.dumps(meta)

    assert meta["true_coefficients"] == {
        "Intercept": 175.0,
        "length": 2.0,
        "sex[T.female]": -20.0,
        "length:sex[T.female]": 1.5,
    }
    assert meta["predictors"][1]["design_columns"] == ["male", "female"]
