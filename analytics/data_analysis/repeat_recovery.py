import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from fitting import repeat_recovery, summarise_repeats
from io_utils import load_global_parameters, load_spec, validate_spec
from simulator import true_coefficients


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Repeat simulate-and-fit to show the sampling distribution of the estimates."
    )
    parser.add_argument(
        "--spec",
        type=Path,
        default=Path("input_parameters") / "simulation.json",
        help="Path to simulation.json.",
    )
    parser.add_argument(
        "--global-params",
        type=Path,
        default=Path("input_parameters") / "global_parameters.json",
        help="Path to global_parameters.json.",
    )
    parser.add_argument(
        "--n-repeats",
        type=int,
        default=None,
        help="Override n_repeats from global parameters.",
    )
    parser.add_argument(
        "--omit-interactions",
        action="store_true",
        help="Fit main effects only.",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("analytics") / "data_analysis" / "artifacts" / "03_repeats",
        help="Directory to write per-repeat estimates and the summary.",
    )
    parser.add_argument("--log-level", type=str, default="WARNING", help="Logging level.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")

    model = validate_spec(load_spec(str(args.spec)))
    globals_cfg = load_global_parameters(str(args.global_params))
    n_repeats = args.n_repeats if args.n_repeats is not None else globals_cfg.n_repeats

    estimates = repeat_recovery(
        model,
        n=globals_cfg.sample_size,
        n_repeats=n_repeats,
        seed=globals_cfg.seed,
        omit_interactions=args.omit_interactions,
    )
    summary = summarise_repeats(estimates, true_coefficients(model))

    args.output_dir.mkdir(parents=True, exist_ok=True)
    estimates.to_csv(args.output_dir / "repeat_estimates.csv")
    summary_path = args.output_dir / "repeat_summary.csv"
    summary.to_csv(summary_path)

    print(summary.to_string(float_format=lambda v: f"{v:.4f}"))
    print(f"\nSaved {n_repeats} repeats to {args.output_dir}")


if __name__ == "__main__":
    main()
