"""Deterministic local agent for CLI backend integration tests.

Reads the prompt from ``--prompt-file`` (or ``--prompt``) and either echoes it
or, for evaluation prompts, prints a fixed score object.
"""

from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--prompt-file", required=False)
    parser.add_argument("--prompt", required=False)
    parser.add_argument(
        "--mode",
        choices=("echo", "fail", "rate-limit", "sleep"),
        default="echo",
    )
    parser.add_argument("--score", type=float, default=8.0)
    parser.add_argument("--sleep-seconds", type=float, default=5.0)
    args = parser.parse_args(argv)

    if args.prompt_file:
        prompt = Path(args.prompt_file).read_text("utf-8")
    elif args.prompt is not None:
        prompt = args.prompt
    else:
        parser.error("Either --prompt-file or --prompt is required")

    if args.mode == "fail":
        print("fatal: invalid model requested", file=sys.stderr)
        return 2
    if args.mode == "rate-limit":
        print("HTTP 429 too many requests, please retry", file=sys.stderr)
        return 1
    if args.mode == "sleep":
        time.sleep(args.sleep_seconds)

    if '"correctness"' in prompt:
        print(
            json.dumps(
                {
                    "correctness": args.score,
                    "completeness": args.score,
                    "clarity": args.score,
                    "relevance": args.score,
                    "issues": [],
                    "strengths": ["echo"],
                },
            ),
        )
        return 0

    print(prompt.strip() or "empty prompt")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
