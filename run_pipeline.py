import subprocess
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parent


def _run_script(script: str, extra_args: list[str] | None = None) -> None:
    cmd = [sys.executable, str(ROOT / script)]
    if extra_args:
        cmd.extend(extra_args)
    print(f"\nRunning: {' '.join(cmd)}")
    subprocess.run(cmd, check=True)


def run_simulation() -> None:
    _run_script("main.py")
    print("\nSimulation completed.")


def run_recovery() -> None:
    omit = input("Fit main effects only (drop interactions)? (y/n) [n]: ").strip().lower()
    fit_args = ["--omit-interactions"] if omit in ("y", "yes") else []
    _run_script("analytics/data_analysis/fit_recovery.py", fit_args)
    print("\nCoefficient recovery completed.")


def run_repeats() -> None:
    _run_script("analytics/data_analysis/repeat_recovery.py")
    print("\nRepeated simulation completed.")


def main() -> None:
    while True:
        print("\nChoose pipeline:")
        print("1) Simulate dataset")
        print("2) Fit model + coefficient recovery")
        print("3) Repeated simulation summary")
        print("4) Exit")
        choice = input("Enter 1, 2, 3 or 4: ").strip()

        if choice == "1":
            run_simulation()
        elif choice == "2":
            run_recovery()
        elif choice == "3":
            run_repeats()
        elif choice == "4":
            print("Exiting pipeline menu.")
            break
        else:
            print("Invalid choice. Please select 1, 2, 3 or 4.")


if __name__ == "__main__":
    main()
