#!/usr/bin/env python3
"""
Accuracy and cost of robust bisection versus comparator error rate.

Reads the JSON summary written by `robust-bisect-simulate` and draws two
panels, one line per search kind:
  - accuracy (fraction of trials that found the true target);
  - mean comparator calls per search.

Usage:
  robust-bisect-plot --json_path results/simulation_summary.json [--out fig.png]
"""

import argparse
import json
import sys

import matplotlib.pyplot as plt
import pandas as pd

MARKERS = {"linear": "o", "dag": "s"}


def load_summary(path: str) -> pd.DataFrame:
    """Return the `summary` records of a simulation JSON file as a DataFrame."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    records = data.get("summary", []) if isinstance(data, dict) else data
    return pd.DataFrame(records)


def plot_summary(summary: pd.DataFrame, out=None):
    """Draw the two panels; save to `out` if given, otherwise show the window."""
    fig, (ax_acc, ax_iter) = plt.subplots(1, 2, figsize=(12, 5))

    for kind, group in summary.groupby("kind", sort=True):
        group = group.sort_values("error_rate")
        marker = MARKERS.get(kind, "^")
        ax_acc.plot(group["error_rate"], group["accuracy"], marker=marker, linestyle="-", label=kind)
        ax_iter.plot(group["error_rate"], group["mean_iterations"], marker=marker, linestyle="-", label=kind)

    ax_acc.set_xlabel("Comparator error rate", fontsize=14)
    ax_acc.set_ylabel("Accuracy (higher is better)", fontsize=14)
    ax_acc.set_ylim(0.0, 1.05)
    ax_iter.set_xlabel("Comparator error rate", fontsize=14)
    ax_iter.set_ylabel("Mean comparator calls (lower is better)", fontsize=14)
    for ax in (ax_acc, ax_iter):
        ax.grid(True, linestyle=":", linewidth=0.6)
        ax.tick_params(axis="both", which="major", labelsize=12)
        ax.legend(fontsize=11)

    fig.tight_layout()
    if out:
        fig.savefig(out, dpi=200)
        print(f"Saved figure to {out}")
    else:
        plt.show()
    return fig


def main():
    ap = argparse.ArgumentParser(description="Plot accuracy and cost versus comparator error rate.")
    ap.add_argument("--json_path", required=True, help="Path to the simulation summary JSON file")
    ap.add_argument("--out", help="Optional output image path (e.g., plot.png)")
    args = ap.parse_args()

    summary = load_summary(args.json_path)
    if summary.empty:
        print("No summary records found in JSON.", file=sys.stderr)
        sys.exit(1)

    plot_summary(summary, out=args.out)


if __name__ == "__main__":
    main()
