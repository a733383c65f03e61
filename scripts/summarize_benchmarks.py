#!/usr/bin/env python3
# scripts/summarize_benchmarks.py
# Aggregate repair bench CSVs (one per run) into a single summary table.

import pandas as pd
import os
import glob
import argparse

REQUIRED = ["id", "ScoreBefore", "ErrorsBefore", "ScoreAfter", "ErrorsAfter", "Repaired", "Attempts"]


def load_csv(path: str) -> pd.DataFrame:
    """Load CSV and ensure required columns exist."""
    df = pd.read_csv(path)
    if "id" not in df.columns:
        df.rename(columns={df.columns[0]: "id"}, inplace=True)

    for col in REQUIRED:
        if col not in df.columns:
            raise ValueError(f"{path} is missing required column '{col}'")

    # Older runs did not record whether the engine was actually consulted
    if "Validated" not in df.columns:
        df["Validated"] = False

    return df


def summarize(name: str, df: pd.DataFrame) -> dict:
    """One summary row per run."""
    total = len(df)
    if total == 0:
        return {"Run": name, "Cases": 0}

    repaired = df["Repaired"].astype(bool)
    fixed_clean = df["ErrorsAfter"] == 0

    def r1(x):
        return round(float(x), 1)

    return {
        "Run": name,
        "Cases": total,
        "mean(ScoreBefore)": r1(df["ScoreBefore"].mean()),
        "mean(ScoreAfter)": r1(df["ScoreAfter"].mean()),
        "ΔScore": r1(df["ScoreAfter"].mean() - df["ScoreBefore"].mean()),
        "% clean after fix": r1(fixed_clean.mean() * 100.0),
        "% repaired": r1(repaired.mean() * 100.0),
        "% engine-validated": r1(df["Validated"].astype(bool).mean() * 100.0),
        "mean(Attempts | repaired)": r1(df.loc[repaired, "Attempts"].mean()) if repaired.any() else None,
    }


def main():
    parser = argparse.ArgumentParser(description="Summarize flowmend repair bench runs.")
    parser.add_argument(
        "--base-dir",
        type=str,
        default="experiments/results",
        help="Directory containing CSV files (default: experiments/results)",
    )
    parser.add_argument(
        "--out",
        type=str,
        default="repair_summary.csv",
        help="Output CSV for summary (default: repair_summary.csv)",
    )
    args = parser.parse_args()

    files = sorted(glob.glob(os.path.join(args.base_dir, "*.csv")))
    rows = []
    for f in files:
        name = os.path.splitext(os.path.basename(f))[0]
        try:
            df = load_csv(f)
        except ValueError as e:
            print(f"[skip] {e}")
            continue
        print(f"[info] {name}: {len(df)} cases")
        rows.append(summarize(name, df))

    if not rows:
        print(f"\n[warn] No repair bench CSVs found in {args.base_dir}. Run `flowmend bench` first.")
        return

    final = pd.DataFrame(rows)
    print("\n===== Repair Bench Summary =====\n")
    print(final.to_string(index=False))
    final.to_csv(args.out, index=False)
    print(f"\nSaved -> {args.out}")


if __name__ == "__main__":
    main()
