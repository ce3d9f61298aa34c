"""Utility for manually judging a local source file.

It validates and evaluates the file exactly like ``POST /run`` does, either
with the local orchestrator or, with ``--remote``, through the sandbox
service (falling back to the local orchestrator when it is unhealthy), and
prints the raw execution response.

Example::

    python -m tools.manual_runner \
        --source solution.cpp \
        --lang cpp \
        --cases cases.json \
        --time-limit 1000 \
        --mem-limit 256

``cases.json`` holds a list of ``{"input": ..., "expected_output": ...}``
objects. Use ``--stdin`` instead to run a single input without an expected
answer and only look at the produced output.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List

from judge import config
from judge.client import SandboxClient, execute_with_fallback
from judge.exception import InfrastructureError, ValidationError
from judge.orchestrator import TestOrchestrator
from judge.result_factory import make_execution_response
from judge.validator import Validator


def load_cases(args: argparse.Namespace) -> List[Dict[str, Any]]:
    """Return test cases from ``--cases`` or a single ``--stdin`` file."""

    if args.cases:
        with args.cases.open() as handle:
            return json.load(handle)
    stdin = args.stdin.read_text() if args.stdin else ""
    return [{"input": stdin, "expected_output": ""}]


def judge_source(
    *,
    source: Path,
    lang: str,
    cases: List[Dict[str, Any]],
    time_limit: int,
    mem_limit: int,
    remote: bool,
    sandbox_config: Dict[str, Any],
) -> Dict[str, Any]:
    """Judge ``source`` and return the execution response."""

    validator = Validator.from_config(sandbox_config)
    request = validator.validate({
        "language": lang,
        "code": source.read_text(),
        "testcases": cases,
        "constraints": {
            "time_limit_ms": time_limit,
            "memory_mb": mem_limit,
        },
    })
    orchestrator = TestOrchestrator.from_config(sandbox_config,
                                                registry=validator.registry)
    if remote:
        result = execute_with_fallback(SandboxClient(), request, orchestrator)
    else:
        result = orchestrator.evaluate(request, submission_id=source.stem)
    return make_execution_response(result, request)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse CLI arguments."""

    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--source",
        required=True,
        type=Path,
        help="source file to judge",
    )
    parser.add_argument(
        "--lang",
        default="python",
        help="language tag, e.g. python, c, cpp, java, javascript",
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--cases",
        type=Path,
        help="JSON file with a list of test cases",
    )
    group.add_argument(
        "--stdin",
        type=Path,
        help="input file for a single run (omit for empty stdin)",
    )
    parser.add_argument(
        "--time-limit",
        type=int,
        default=config.DEFAULT_TIME_LIMIT_MS,
        help="time limit in milliseconds",
    )
    parser.add_argument(
        "--mem-limit",
        type=int,
        default=config.DEFAULT_MEMORY_MB,
        help="memory limit in megabytes",
    )
    parser.add_argument(
        "--remote",
        action="store_true",
        help=f"use the sandbox service at {config.SANDBOX_URL}",
    )
    parser.add_argument(
        "--config",
        default=None,
        type=Path,
        help="path to sandbox configuration file",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """CLI entry point."""

    args = parse_args(argv)
    try:
        response = judge_source(
            source=args.source,
            lang=args.lang,
            cases=load_cases(args),
            time_limit=args.time_limit,
            mem_limit=args.mem_limit,
            remote=args.remote,
            sandbox_config=config.get_sandbox_config(args.config),
        )
    except ValidationError as e:
        print(json.dumps({"errors": e.violations}, indent=2), file=sys.stderr)
        return 2
    except InfrastructureError as e:
        print(f"sandbox error: {e}", file=sys.stderr)
        return 1
    print(json.dumps(response, indent=2, ensure_ascii=False))
    return 0 if response["status"] == "AC" else 1


if __name__ == "__main__":
    sys.exit(main())
