#scripts/plot_results.py
# Plot validation scores before/after fixing from the repair bench CSV (matplotlib, single figure).

import argparse
from pathlib import Path
import pandas as pd
import matplotlib.pyplot as plt
import numpy as np

def main():
    parser = argparse.ArgumentParser(description="Plot flowmend repair bench scores from CSV.")
    parser.add_argument("--csv", type=Path, default=Path("experiments/results/repair.csv"), help="Input CSV path")
    parser.add_argument("--out", type=Path, default=Path("experiments/results/repair_plot.png"), help="Output PNG path")
    parser.add_argument("--show", action="store_true", help="Show the plot window")
    args = parser.parse_args()

    df = pd.read_csv(args.csv)
    if "id" not in df.columns:
        df["id"] = [f"R{idx+1:03d}" for idx in range(len(df))]

    x = np.arange(len(df))
    width = 0.38

    fig, ax = plt.subplots(figsize=(10, 5))
    ax.bar(x - width / 2, df["ScoreBefore"], width, label="Score before fix", color="tab:gray")
    ax.bar(x + width / 2, df["ScoreAfter"], width, label="Score after fix", color="tab:blue")

    # Mark cases the repair loop could not bring to acceptance
    if "Repaired" in df.columns:
        failed = ~df["Repaired"].astype(bool)
        ax.scatter(x[failed], df["ScoreAfter"][failed] + 3, marker="x", color="tab:red", label="Not repaired")

    ax.set_xticks(x)
    ax.set_xticklabels(df["id"], rotation=45, ha="right")
    ax.set_ylim(0, 105)
    ax.set_xlabel("Case")
    ax.set_ylabel("Validation score")
    ax.set_title("flowmend: validation score before / after deterministic fix")
    ax.legend()
    ax.grid(axis="y", alpha=0.2)
    args.out.parent.mkdir(parents=True, exist_ok=True)
    fig.tight_layout()
    fig.savefig(args.out, dpi=200)
    if args.show:
        plt.show()

if __name__ == "__main__":
    main()
