#!/usr/bin/env python3

"""
Monte Carlo calibration of the noisy searchers.

Runs many independent searches against a simulated comparator that lies with
a known probability and tabulates how often the search lands on the true
target, how many comparator calls it needs, and what confidence it reports.

Inputs:
  - a domain: a linear range of `--size` positions, or a random commit-like DAG
    of `--size` nodes (`--kind dag`);
  - the true error rates to sweep (`--error-rates`);
  - the error rate the searcher assumes (`--assumed-error-rate`, defaults to
    the true rate of each sweep point).

Outputs:
  - a JSON summary grouped by kind and error rate (`--output`);
  - optionally the per-trial rows as CSV (`--trials-csv`) and a plot (`--plot`).

Run:
  - `robust-bisect-simulate --size 100 --error-rates 0,0.01,0.05,0.1 --trials 200`
"""

from __future__ import annotations

import argparse
import json
import logging
import os
from typing import Any, Callable, Dict, Hashable, List, Optional, Sequence, Set

import numpy as np
import pandas as pd

from robust_bisect.auto import AutoCompressedDAGSearcher, AutoSearcher, FailurePolicy
from robust_bisect.config import DEFAULT_TARGET_CONFIDENCE, SearchConfig
from robust_bisect.dag import CommitDAG

logger = logging.getLogger(__name__)

KINDS = ("linear", "dag")


class NoisyComparator:
    """Wraps a truthful comparator and flips each answer with probability `error_rate`."""

    def __init__(self, truth: Callable[[Any], bool], error_rate: float, rng: np.random.Generator) -> None:
        self.truth = truth
        self.error_rate = float(error_rate)
        self.rng = rng
        self.calls = 0
        self.flips = 0

    def __call__(self, position: Any) -> bool:
        self.calls += 1
        answer = bool(self.truth(position))
        if self.error_rate > 0.0 and self.rng.random() < self.error_rate:
            self.flips += 1
            return not answer
        return answer


def random_dag(
    size: int,
    rng: np.random.Generator,
    *,
    branch_probability: float = 0.2,
    merge_probability: float = 0.1,
) -> CommitDAG:
    """
    Random commit-like history of `size` nodes `0..size-1`.

    Node 0 is the root. Each later node usually extends the previous one,
    sometimes branches off an older node, and sometimes merges a second
    parent. The last node merges every remaining head, so the whole graph
    lies between node 0 and node `size - 1`.
    """
    if size <= 0:
        raise ValueError(f"size must be positive, got {size}")
    edges: List[tuple] = []
    heads: Set[int] = {0}
    for node in range(1, size - 1):
        if rng.random() < branch_probability:
            first = int(rng.integers(0, node))
        else:
            first = node - 1
        parents = {first}
        if node > 1 and rng.random() < merge_probability:
            parents.add(int(rng.integers(0, node)))
        for parent in sorted(parents):
            edges.append((parent, node))
            heads.discard(parent)
        heads.add(node)
    if size > 1:
        for head in sorted(heads):
            edges.append((head, size - 1))
    return CommitDAG(range(size), edges, 0, size - 1)


def _descendants_or_self(dag: CommitDAG, node: Hashable) -> Set[Hashable]:
    start = dag.rank(node)
    seen = {start}
    stack = [start]
    while stack:
        for child in dag.children(stack.pop()):
            if child not in seen:
                seen.add(child)
                stack.append(child)
    return {dag.node(r) for r in seen}


def _row(kind: str, size: int, target: Any, error_rate: float, config: SearchConfig, result, comparator) -> Dict[str, Any]:
    return {
        "kind": kind,
        "size": int(size),
        "target": target,
        "error_rate": float(error_rate),
        "assumed_error_rate": float(config.error_rate),
        "found": result.position,
        "correct": bool(result.position == target),
        "confidence": float(result.confidence),
        "iterations": int(result.iterations),
        "status": result.status.value,
        "converged": bool(result.converged),
        "flips": int(comparator.flips),
        "estimated_error_rate": float(result.estimated_error_rate),
    }


def run_linear_trial(
    size: int, target: int, error_rate: float, config: SearchConfig, rng: np.random.Generator
) -> Dict[str, Any]:
    """One linear search for `target`; returns a result row."""
    comparator = NoisyComparator(lambda x: x >= target, error_rate, rng)
    result = AutoSearcher(size, comparator, config, on_failure=FailurePolicy.RAISE).run()
    return _row("linear", size, target, error_rate, config, result, comparator)


def run_dag_trial(
    dag: CommitDAG, target: Hashable, error_rate: float, config: SearchConfig, rng: np.random.Generator
) -> Dict[str, Any]:
    """One DAG search for `target`; a node is bad iff it descends from (or is) the target."""
    bad = _descendants_or_self(dag, target)
    comparator = NoisyComparator(lambda node: node in bad, error_rate, rng)
    result = AutoCompressedDAGSearcher(dag, comparator, config, on_failure=FailurePolicy.RAISE).run()
    return _row("dag", len(dag), target, error_rate, config, result, comparator)


def simulate(
    *,
    kind: str = "linear",
    size: int = 100,
    error_rates: Sequence[float] = (0.0, 0.01, 0.05, 0.1),
    trials: int = 100,
    seed: int = 42,
    target_confidence: float = DEFAULT_TARGET_CONFIDENCE,
    assumed_error_rate: Optional[float] = None,
    max_iterations: Optional[int] = None,
) -> pd.DataFrame:
    """
    Run `trials` searches per error rate and return one row per trial.

    Targets are drawn uniformly from the domain. For `kind="dag"` a fresh
    random DAG is drawn for every trial.
    """
    if kind not in KINDS:
        raise ValueError(f"kind must be one of {KINDS}, got {kind!r}")
    if trials <= 0:
        raise ValueError(f"trials must be positive, got {trials}")
    rng = np.random.default_rng(seed)
    rows: List[Dict[str, Any]] = []
    for error_rate in error_rates:
        config = SearchConfig(
            error_rate=float(error_rate) if assumed_error_rate is None else float(assumed_error_rate),
            target_confidence=target_confidence,
            max_iterations=max_iterations,
        )
        for trial in range(trials):
            if kind == "linear":
                target = int(rng.integers(0, size))
                row = run_linear_trial(size, target, error_rate, config, rng)
            else:
                dag = random_dag(size, rng)
                nodes = dag.nodes()
                target = nodes[int(rng.integers(0, len(nodes)))]
                row = run_dag_trial(dag, target, error_rate, config, rng)
            row["trial"] = trial
            rows.append(row)
        logger.info("kind=%s error_rate=%s: %d trial(s) done", kind, error_rate, trials)
    return pd.DataFrame(rows)


def summarize(df: pd.DataFrame) -> pd.DataFrame:
    """Accuracy, iteration and confidence statistics per (kind, error_rate)."""
    grouped = df.groupby(["kind", "error_rate"], sort=True)
    summary = grouped.agg(
        trials=("correct", "size"),
        accuracy=("correct", "mean"),
        converged=("converged", "mean"),
        mean_iterations=("iterations", "mean"),
        max_iterations=("iterations", "max"),
        mean_confidence=("confidence", "mean"),
        mean_estimated_error_rate=("estimated_error_rate", "mean"),
    )
    return summary.reset_index()


def _parse_rates(raw: str) -> List[float]:
    rates = [float(tok) for tok in str(raw).split(",") if tok.strip()]
    if not rates:
        raise ValueError("--error-rates must list at least one value")
    return rates


def get_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Monte Carlo calibration of robust bisection.")
    parser.add_argument("--kind", default="linear", choices=list(KINDS) + ["both"])
    parser.add_argument("--size", type=int, default=100, help="Domain size (positions or DAG nodes).")
    parser.add_argument(
        "--error-rates",
        default="0,0.01,0.05,0.1",
        help="Comma-separated true comparator error rates to sweep.",
    )
    parser.add_argument(
        "--assumed-error-rate",
        type=float,
        default=None,
        help="Error rate the searcher assumes (defaults to each true rate).",
    )
    parser.add_argument("--trials", type=int, default=100, help="Trials per error rate.")
    parser.add_argument("--seed", type=int, default=42, help="Random seed.")
    parser.add_argument("--target-confidence", type=float, default=DEFAULT_TARGET_CONFIDENCE)
    parser.add_argument("--max-iterations", type=int, default=None)
    parser.add_argument(
        "--output",
        default=os.path.join("results", "simulation_summary.json"),
        help="Where to write the JSON summary.",
    )
    parser.add_argument("--trials-csv", default=None, help="Optional CSV path for per-trial rows.")
    parser.add_argument("--plot", default=None, help="Optional image path for the summary plot.")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Python logging level.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the sweep and write the summary."""
    args = get_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # Per-search INFO lines would drown the sweep.
    logging.getLogger("robust_bisect.linear").setLevel(logging.WARNING)
    logging.getLogger("robust_bisect.dag_searcher").setLevel(logging.WARNING)

    kinds = list(KINDS) if args.kind == "both" else [args.kind]
    frames = [
        simulate(
            kind=kind,
            size=args.size,
            error_rates=_parse_rates(args.error_rates),
            trials=args.trials,
            seed=args.seed,
            target_confidence=args.target_confidence,
            assumed_error_rate=args.assumed_error_rate,
            max_iterations=args.max_iterations,
        )
        for kind in kinds
    ]
    df = pd.concat(frames, ignore_index=True)
    summary = summarize(df)

    payload = {
        "params": {
            "kind": args.kind,
            "size": args.size,
            "trials": args.trials,
            "seed": args.seed,
            "target_confidence": args.target_confidence,
            "assumed_error_rate": args.assumed_error_rate,
            "max_iterations": args.max_iterations,
        },
        "summary": summary.to_dict(orient="records"),
    }
    out_dir = os.path.dirname(args.output)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    with open(args.output, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True, default=float)
    logger.info("Wrote summary to %s", args.output)

    if args.trials_csv:
        df.to_csv(args.trials_csv, index=False)
        logger.info("Wrote %d trial row(s) to %s", len(df), args.trials_csv)

    if args.plot:
        from robust_bisect.plot import plot_summary

        plot_summary(summary, out=args.plot)

    for record in payload["summary"]:
        logger.info(
            "%s p=%.3f accuracy=%.3f mean_iterations=%.1f mean_confidence=%.4f",
            record["kind"],
            record["error_rate"],
            record["accuracy"],
            record["mean_iterations"],
            record["mean_confidence"],
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
