from dataclasses import dataclass

@dataclass(frozen=True)
class SimConfig:
    spec_path: str = "input_parameters/simulation.json"
    global_path: str = "input_parameters/global_parameters.json"
    output_dir: str = "analytics/data_analysis/artifacts/01_datasets"
    output_basename: str = "simulated_dataset"
    # Seed used when global_parameters.json does not set one.
    seed: int = 42
    # If True, the noise-free mean is written next to the observed response.
    include_mean: bool = True
