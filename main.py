import argparse
import json
import logging
from pathlib import Path
import sys

# Allow running without installing the package.
sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from config import SimConfig
from io_utils import load_global_parameters, load_spec, spec_to_metadata, validate_spec
from simulator import make_rng, simulate_dataset


def parse_args() -> argparse.Namespace:
    defaults = SimConfig()
    parser = argparse.ArgumentParser(
        description="Simulate one dataset from the linear model in input_parameters/simulation.json."
    )
    parser.add_argument("--spec", type=Path, default=Path(defaults.spec_path), help="Path to simulation.json.")
    parser.add_argument(
        "--global-params",
        type=Path,
        default=Path(defaults.global_path),
        help="Path to global_parameters.json.",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path(defaults.output_dir),
        help="Directory to write the dataset and metadata.",
    )
    parser.add_argument("--seed", type=int, default=None, help="Override the seed from global parameters.")
    parser.add_argument("--log-level", type=str, default="WARNING", help="Logging level.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    cfg = SimConfig(spec_path=str(args.spec), global_path=str(args.global_params), output_dir=str(args.output_dir))

    model = validate_spec(load_spec(cfg.spec_path))
    globals_cfg = load_global_parameters(cfg.global_path)

    seed = args.seed if args.seed is not None else globals_cfg.seed
    if seed is None:
        seed = cfg.seed
    n = globals_cfg.sample_size

    rng = make_rng(seed)
    dataset = simulate_dataset(model, n, rng)

    output_dir = Path(cfg.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    data_path = output_dir / f"{cfg.output_basename}.csv"
    dataset.to_frame(include_mean=cfg.include_mean).to_csv(data_path, index=False)

    meta_path = output_dir / f"{cfg.output_basename}_metadata.json"
    meta_payload = {
        "model": spec_to_metadata(model),
        "simulation": {
            "sample_size": n,
            "seed": seed,
            "observed_response_mean": float(dataset.response.mean()),
            "noise_free_mean": float(dataset.mu.mean()),
        },
    }
    meta_path.write_text(json.dumps(meta_payload, indent=2) + "\n", encoding="utf-8")

    print(f"Wrote {n} rows to {data_path}")
    print(f"Wrote metadata to {meta_path}")


if __name__ == "__main__":
    main()
