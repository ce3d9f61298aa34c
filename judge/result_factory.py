"""
Factory functions for the wire shapes exchanged with callers.

This module provides consistent result structures for:
- Synchronous execution responses (``POST /run``)
- Validation and infrastructure error responses
- Per-case records persisted on a submission document
"""

from typing import List

from .constant import ERROR_STATUS, VALIDATION_ERROR_STATUS
from .meta import AggregateResult, ExecutionOutcome, ExecutionRequest


def make_case_detail(outcome: ExecutionOutcome,
                     request: ExecutionRequest) -> dict:
    """
    Build one entry of ``details`` in the execution response.

    Hidden test cases keep their verdict and timing but never expose the
    produced output or the expected answer.

    Args:
        outcome: Outcome of the test case
        request: The request the outcome belongs to

    Returns:
        Case detail dictionary
    """
    case = request.test_cases[outcome.index]
    detail = {
        "testcase": outcome.index + 1,
        "status": outcome.verdict.value,
        "passed": outcome.passed,
        "time": outcome.time_ms,
        "memory": outcome.memory_kb,
        "stdout": outcome.stdout,
        "stderr": outcome.stderr,
        "message": outcome.message,
        "expected": case.expected_output,
        "hidden": outcome.hidden,
    }
    if outcome.hidden:
        detail.update(stdout=None, stderr=None, expected=None)
    return detail


def make_execution_response(result: AggregateResult,
                            request: ExecutionRequest) -> dict:
    """
    Build the synchronous execution response.

    Args:
        result: Aggregated result of the evaluation
        request: The validated request

    Returns:
        Response dictionary
    """
    response = {
        "status": result.verdict.value,
        "passed": result.passed,
        "total": result.total,
        "runtime_ms": result.runtime_ms,
        "memory_kb": result.memory_kb,
        "score": result.score,
        "details": [make_case_detail(o, request) for o in result.outcomes],
    }
    if result.compile_output:
        response["message"] = "Compilation Error"
        response["stderr"] = result.compile_output
    return response


def make_validation_response(violations: List[str]) -> dict:
    return {
        "status": VALIDATION_ERROR_STATUS,
        "errors": list(violations),
    }


def make_error_response(message: str = "Internal sandbox error") -> dict:
    return {
        "status": ERROR_STATUS,
        "message": message,
    }


def make_case_records(result: AggregateResult,
                      request: ExecutionRequest) -> List[dict]:
    """
    Build the per-case records stored on a submission document.

    Args:
        result: Aggregated result of the evaluation
        request: The evaluated request

    Returns:
        List of case records, aligned with the outcomes
    """
    records = []
    for outcome in result.outcomes:
        case = request.test_cases[outcome.index]
        records.append({
            "index": outcome.index,
            "status": outcome.verdict.value,
            "passed": outcome.passed,
            "executionTime": outcome.time_ms,
            "memoryUsed": outcome.memory_kb,
            "output": outcome.stdout,
            "expectedOutput": case.expected_output,
            "error": outcome.stderr or None,
            "hidden": case.hidden,
        })
    return records
