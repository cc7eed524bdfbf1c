#!/usr/bin/env python3

"""
Robust `git bisect` that keeps working when the test command is flaky.

Builds the commit DAG between a known-good start commit and a bad end commit
from `git log --format=%H %P start..end`, then runs a compressed DAG search in
which each query checks out a commit and runs the test command through
`sh -c` (a non-zero exit means "bad"). A commit that cannot be checked out is
a comparator failure, handled by `--on-failure`.

Run:
  robust-git-bisect --dir path/to/repo --on-failure exclude GOOD BAD "make test"

Defaults for the error rate, target confidence and iteration cap can also be
set through ROBUST_BISECT_ERROR_RATE, ROBUST_BISECT_TARGET_CONFIDENCE and
ROBUST_BISECT_MAX_ITERATIONS (optionally from a `.env` file); command-line
flags win.
"""

from __future__ import annotations

import argparse
import logging
import os
import subprocess
import sys
import time
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence

from robust_bisect.auto import AutoCompressedDAGSearcher, FailurePolicy, SearchStep
from robust_bisect.config import load_search_config
from robust_bisect.dag import CommitDAG
from robust_bisect.errors import ComparatorFailure, PreconditionError, SearchAborted

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def configure_logging(verbosity: int = 0, log_dir: Optional[str] = None) -> logging.Logger:
    """
    Send the package's log records to stdout, and to a timestamped file in `log_dir`.

    `verbosity` 0 shows warnings, 1 progress, 2 or more debug traces. Handlers
    are attached once; later calls only change the level.
    """
    package_logger = logging.getLogger("robust_bisect")
    if verbosity >= 2:
        package_logger.setLevel(logging.DEBUG)
    elif verbosity == 1:
        package_logger.setLevel(logging.INFO)
    else:
        package_logger.setLevel(logging.WARNING)
    if package_logger.handlers:
        return package_logger

    formatter = logging.Formatter(LOG_FORMAT)
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    package_logger.addHandler(console)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        stamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        log_file = logging.FileHandler(os.path.join(log_dir, f"bisect_{stamp}.log"))
        log_file.setFormatter(formatter)
        package_logger.addHandler(log_file)
    return package_logger


def run_git(args: Sequence[str], repo_dir: str) -> str:
    """Run `git <args>` in `repo_dir` and return stdout; raises CalledProcessError on failure."""
    command = ["git", *args]
    logger.info("Executing %s", " ".join(command))
    result = subprocess.run(command, cwd=repo_dir, capture_output=True, text=True, check=True)
    logger.debug("Command %s finished successfully", " ".join(command))
    return result.stdout


def resolve_commit(ref: str, repo_dir: str) -> str:
    return run_git(["rev-parse", "--verify", f"{ref}^{{commit}}"], repo_dir).strip()


def parse_commit_log(text: str) -> Dict[str, List[str]]:
    """
    Parse `git log --format=%H %P` output into `commit -> [parents]`.

    Example:
        "c3 c2\\nc2 c1\\n" -> {"c3": ["c2"], "c2": ["c1"]}
    """
    parents: Dict[str, List[str]] = {}
    for line in text.splitlines():
        hashes = line.split()
        if not hashes:
            continue
        parents[hashes[0]] = hashes[1:]
    return parents


def build_commit_dag(parents: Mapping[str, Sequence[str]], start: str, end: str) -> CommitDAG:
    """
    Commit DAG between `start` and `end`, with `start` included as the root.

    Commits in the log that do not descend from `start` are dropped.
    """
    if not parents:
        raise PreconditionError(f"No commits found between {start} and {end}")
    if end not in parents:
        raise PreconditionError(f"End commit {end} is not part of the log between {start} and {end}")
    return CommitDAG.from_parents(parents, start, end)


def load_commit_dag(repo_dir: str, start_ref: str, end_ref: str) -> CommitDAG:
    start = resolve_commit(start_ref, repo_dir)
    end = resolve_commit(end_ref, repo_dir)
    log = run_git(["log", f"{start}..{end}", "--format=format:%H %P"], repo_dir)
    parents = parse_commit_log(log)
    logger.info("Parsed %d commit(s) between %s and %s", len(parents), start, end)
    return build_commit_dag(parents, start, end)


class GitTestComparator:
    """Checks out a commit and runs `test_cmd`; True ("bad") when the command fails."""

    def __init__(self, repo_dir: str, test_cmd: str) -> None:
        self.repo_dir = repo_dir
        self.test_cmd = test_cmd

    def __call__(self, commit: str) -> bool:
        try:
            run_git(["checkout", "--quiet", commit], self.repo_dir)
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            raise ComparatorFailure(commit, f"git checkout {commit} failed: {stderr}", cause=exc) from exc

        logger.info("Executing sh -c %r", self.test_cmd)
        try:
            result = subprocess.run(
                ["sh", "-c", self.test_cmd], cwd=self.repo_dir, capture_output=True, text=True
            )
        except OSError as exc:
            raise ComparatorFailure(commit, f"could not run test command: {exc}", cause=exc) from exc
        bad = result.returncode != 0
        logger.debug("Test command exited with %d", result.returncode)
        print(f"Reporting {commit} as {'bad' if bad else 'good'}")
        return bad


def print_progress(step: SearchStep) -> None:
    print(
        f"Most likely commit is {step.leader} with likelihood {step.confidence:.6f} "
        f"after {step.iteration} iterations.  "
        f"Estimated error rate is {step.estimated_error_rate:.4f}."
    )


def get_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Robust git bisect which works in the face of noise.")
    parser.add_argument("--dir", default=".", help="Git repo directory")
    parser.add_argument(
        "--min-likelihood",
        type=float,
        default=None,
        help="Minimum likelihood required to stop iterating (default 0.99).",
    )
    parser.add_argument(
        "--error-rate",
        type=float,
        default=None,
        help="Assumed probability that the test command gives the wrong answer (default 0.01).",
    )
    parser.add_argument("--max-iterations", type=int, default=None, help="Hard cap on test runs.")
    parser.add_argument(
        "--on-failure",
        required=True,
        choices=[p.value for p in FailurePolicy],
        help="What to do when a commit cannot be checked out.",
    )
    parser.add_argument("--env-file", default=None, help="Optional .env file with ROBUST_BISECT_* defaults.")
    parser.add_argument("--log-dir", default=None, help="Also write logs to a timestamped file here.")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More verbose output")
    parser.add_argument("start", help="Good/start commit")
    parser.add_argument("end", help="Bad/end commit")
    parser.add_argument(
        "test_cmd",
        help="Command to run which succeeds for good commits and fails for bad commits",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the bisection; exit code 0 when the target confidence was reached."""
    started = time.monotonic()
    args = get_args(argv)

    configure_logging(args.verbose, log_dir=args.log_dir)

    try:
        config = load_search_config(
            env_path=args.env_file,
            error_rate=args.error_rate,
            target_confidence=args.min_likelihood,
            max_iterations=args.max_iterations,
        )
        dag = load_commit_dag(args.dir, args.start, args.end)
    except (PreconditionError, subprocess.CalledProcessError) as exc:
        logger.error("%s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return 2
    logger.info("Commit DAG built in %.3f seconds: %r", time.monotonic() - started, dag)

    driver = AutoCompressedDAGSearcher(
        dag,
        GitTestComparator(args.dir, args.test_cmd),
        config,
        on_failure=args.on_failure,
        on_report=print_progress,
    )
    logger.info("Running bisection")
    try:
        result = driver.run()
    except SearchAborted as exc:
        print(f"error: {exc} ({exc.__cause__})", file=sys.stderr)
        return 3

    print(
        f"Search {result.status.value}: most likely commit is {result.position} "
        f"with likelihood {result.confidence:.6f} after {result.iterations} iterations."
    )
    if result.failures:
        print(f"Commits that could not be tested: {', '.join(map(str, result.failures))}")
    logger.info("Elapsed time: %.3f seconds", time.monotonic() - started)
    return 0 if result.converged else 1


if __name__ == "__main__":
    raise SystemExit(main())
