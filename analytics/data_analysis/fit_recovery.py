import argparse
import json
import logging
import sys
from pathlib import Path

import pandas as pd

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from fitting import fit_linear_model, model_terms, recovery_table
from io_utils import load_spec, validate_spec
from simulator import true_coefficients


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fit a linear model to the simulated dataset and compare it with the true coefficients."
    )
    parser.add_argument(
        "--input",
        type=Path,
        default=Path("analytics") / "data_analysis" / "artifacts" / "01_datasets" / "simulated_dataset.csv",
        help="Path to the simulated dataset CSV.",
    )
    parser.add_argument(
        "--spec",
        type=Path,
        default=Path("input_parameters") / "simulation.json",
        help="Simulation spec used to create the dataset.",
    )
    parser.add_argument(
        "--omit-interactions",
        action="store_true",
        help="Fit main effects only, even if the data was simulated with interactions.",
    )
    parser.add_argument(
        "--default-reference",
        action="store_true",
        help="Let the fit pick reference levels alphabetically instead of using the declared ones.",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("analytics") / "data_analysis" / "artifacts" / "02_recovery",
        help="Directory to write the recovery report.",
    )
    parser.add_argument("--log-level", type=str, default="WARNING", help="Logging level.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")

    if not args.input.exists():
        raise FileNotFoundError(f"Missing input dataset: {args.input}. Run main.py first.")

    model = validate_spec(load_spec(str(args.spec)))
    categorical = [p.name for p in model.predictors if p.kind == "categorical"]
    # Labels such as "01" or "NA" must survive the CSV round trip unchanged.
    df = pd.read_csv(args.input, dtype={name: str for name in categorical}, keep_default_na=False)

    references = None
    if not args.default_reference:
        references = {p.name: p.levels.reference for p in model.predictors if p.kind == "categorical"}

    main_effects, interactions = model_terms(model, omit_interactions=args.omit_interactions)
    fit = fit_linear_model(df, model.response, main_effects, interactions, references)
    report = recovery_table(fit, true_coefficients(model))

    args.output_dir.mkdir(parents=True, exist_ok=True)
    suffix = "_main_effects_only" if args.omit_interactions else ""
    report_path = args.output_dir / f"coefficient_recovery{suffix}.csv"
    report.to_csv(report_path)

    summary_path = args.output_dir / f"fit_summary{suffix}.json"
    summary = {
        "n_obs": fit.n_obs,
        "df_resid": fit.df_resid,
        "residual_sd": fit.residual_sd,
        "true_residual_sd": float(model.residual_sd),
        "terms_outside_2se": report.index[~report["within_2se"]].tolist(),
    }
    summary_path.write_text(json.dumps(summary, indent=2) + "\n", encoding="utf-8")

    print(report.to_string(float_format=lambda v: f"{v:.4f}"))
    print(f"\nSaved recovery report to {report_path}")


if __name__ == "__main__":
    main()
