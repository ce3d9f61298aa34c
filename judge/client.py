"""HTTP client other subsystems use instead of calling the orchestrator."""

from typing import List, Optional

import requests

from . import config
from .constant import ERROR_STATUS, VALIDATION_ERROR_STATUS, Verdict
from .exception import (
    SandboxResponseError,
    SandboxTimeoutError,
    SandboxUnavailableError,
    ValidationError,
)
from .meta import AggregateResult, ExecutionOutcome, ExecutionRequest
from .utils import logger

FALLBACK_LANGUAGES = ['python', 'cpp', 'c', 'java', 'javascript']


class SandboxClient:
    """Synchronous façade over the sandbox service.

    Every transport failure is mapped onto the ``SandboxClientError``
    family, which are infrastructure errors: the submission queue retries
    them, while a rejected request surfaces as ``ValidationError``.
    """

    def __init__(
        self,
        base_url: str = config.SANDBOX_URL,
        timeout: float = config.CLIENT_TIMEOUT,
        health_timeout: float = config.HEALTH_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.health_timeout = health_timeout
        self.session = session or requests.Session()

    def _post(self, path: str, payload: dict) -> dict:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.post(url, json=payload, timeout=self.timeout)
        except requests.Timeout as exc:
            raise SandboxTimeoutError("Sandbox execution timeout") from exc
        except requests.ConnectionError as exc:
            raise SandboxUnavailableError(
                "Sandbox service unavailable") from exc
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.status_code == 400 and data.get(
                "status") == VALIDATION_ERROR_STATUS:
            raise ValidationError(data.get("errors") or [])
        if not resp.ok or data.get("status") == ERROR_STATUS:
            message = data.get("message") or resp.reason or "unknown error"
            raise SandboxResponseError(
                f"Sandbox error: {message}",
                status_code=resp.status_code,
                payload=data,
            )
        return data

    def execute(
        self,
        code: str,
        language: str,
        test_cases: List[dict],
        limits: Optional[dict] = None,
    ) -> dict:
        limits = limits or {}
        payload = {
            "language": language,
            "code": code,
            "testcases": [{
                "input": tc.get("input", ""),
                "expected_output": tc.get("expected_output",
                                          tc.get("output", "")),
                "weight": tc.get("weight"),
                "hidden": bool(tc.get("hidden", False)),
            } for tc in test_cases],
            "constraints": {
                "time_limit_ms":
                limits.get("time_limit_ms", config.DEFAULT_TIME_LIMIT_MS),
                "memory_mb":
                limits.get("memory_mb", config.DEFAULT_MEMORY_MB),
            },
        }
        return self.normalize_response(self._post("/run", payload))

    def evaluate(self,
                 request: ExecutionRequest,
                 submission_id: Optional[str] = None,
                 observer=None) -> AggregateResult:
        # the remote service reports no intermediate states
        if observer:
            observer("running")
        data = self.execute(
            code=request.code,
            language=request.language,
            test_cases=[
                tc.model_dump() for tc in request.test_cases
            ],
            limits=request.limits.model_dump(),
        )
        result = to_aggregate(data)
        if observer:
            observer(result.verdict.value)
        return result

    @staticmethod
    def normalize_response(data: dict) -> dict:
        return {
            "status": data.get("status") or Verdict.RE.value,
            "passed": data.get("passed") or 0,
            "total": data.get("total") or 0,
            "runtime_ms": data.get("runtime_ms") or 0,
            "memory_kb": data.get("memory_kb") or 0,
            "score": data.get("score") or 0.0,
            "details": data.get("details") or [],
            "stderr": data.get("stderr") or "",
        }

    def health_check(self) -> bool:
        try:
            resp = self.session.get(f"{self.base_url}/health",
                                    timeout=self.health_timeout)
            return resp.ok and resp.json().get("status") == "OK"
        except (requests.RequestException, ValueError) as exc:
            logger().debug(f"sandbox health check failed: {exc}")
            return False

    def supported_languages(self) -> List[str]:
        try:
            resp = self.session.get(f"{self.base_url}/languages",
                                    timeout=self.health_timeout)
            resp.raise_for_status()
            return resp.json().get("languages") or FALLBACK_LANGUAGES
        except (requests.RequestException, ValueError):
            return list(FALLBACK_LANGUAGES)


def _or_unknown(value) -> int:
    return -1 if value is None else int(value)


def to_aggregate(data: dict) -> AggregateResult:
    outcomes = []
    for detail in data.get("details") or []:
        outcomes.append(
            ExecutionOutcome(
                index=int(detail.get("testcase", len(outcomes) + 1)) - 1,
                verdict=Verdict(detail.get("status", Verdict.RE.value)),
                passed=bool(detail.get("passed")),
                time_ms=_or_unknown(detail.get("time")),
                memory_kb=_or_unknown(detail.get("memory")),
                stdout=detail.get("stdout") or "",
                stderr=detail.get("stderr") or "",
                message=detail.get("message") or "",
                hidden=bool(detail.get("hidden")),
            ))
    total = data.get("total") or 0
    return AggregateResult(
        verdict=Verdict(data.get("status") or Verdict.RE.value),
        passed=data.get("passed") or 0,
        total=total,
        runtime_ms=data.get("runtime_ms") or 0,
        memory_kb=data.get("memory_kb") or 0,
        score=data.get("score") or 0.0,
        compile_output=data.get("stderr") or "",
        stopped_early=len(outcomes) < total,
        outcomes=outcomes,
    )


def execute_with_fallback(client: SandboxClient, request: ExecutionRequest,
                          orchestrator) -> AggregateResult:
    """Use the remote sandbox when healthy, the local orchestrator otherwise."""
    if client.health_check():
        try:
            return client.evaluate(request)
        except SandboxUnavailableError as exc:
            logger().warning("sandbox vanished, falling back to local: %s",
                             exc)
    else:
        logger().info("Sandbox unavailable, falling back to local executor")
    return orchestrator.evaluate(request)
