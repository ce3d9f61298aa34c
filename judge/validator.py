'''
Request validation.

Every violation is collected so the caller receives the whole list in one
rejection. Nothing here spawns a process.

The denylist check is an advisory substring filter. It catches the obvious
escape attempts (``import os``, ``system(`` ...) but is trivially bypassed
and must never be treated as an isolation boundary; real isolation belongs
underneath the process executor (namespaces, cgroups or a micro-VM).
'''
from typing import Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from . import config
from .exception import ValidationError
from .languages import LanguageRegistry
from .meta import ExecutionRequest
from .utils import logger


def scan_denylist(code: str, denylist: Iterable[str]) -> List[str]:
    return [
        f'Forbidden keyword detected: {keyword}' for keyword in denylist
        if keyword and keyword in code
    ]


def _shape_violations(exc: PydanticValidationError) -> List[str]:
    violations = []
    for err in exc.errors():
        loc = '.'.join(str(p) for p in err.get('loc', ()))
        violations.append(f'{loc}: {err.get("msg")}' if loc else err['msg'])
    return violations


class Validator:

    def __init__(
        self,
        registry: Optional[LanguageRegistry] = None,
        denylist: Optional[Iterable[str]] = None,
        denylist_enabled: bool = True,
        max_code_bytes: int = config.MAX_CODE_BYTES,
        max_test_cases: int = config.MAX_TEST_CASES,
        max_time_limit_ms: int = config.MAX_TIME_LIMIT_MS,
        max_memory_mb: int = config.MAX_MEMORY_MB,
    ):
        self.registry = registry or LanguageRegistry()
        self.denylist = list(
            config.DEFAULT_DENYLIST if denylist is None else denylist)
        self.denylist_enabled = denylist_enabled
        self.max_code_bytes = max_code_bytes
        self.max_test_cases = max_test_cases
        self.max_time_limit_ms = max_time_limit_ms
        self.max_memory_mb = max_memory_mb

    @classmethod
    def from_config(cls, cfg: dict, registry: LanguageRegistry = None):
        return cls(
            registry=registry or LanguageRegistry.from_config(cfg),
            denylist=cfg.get('denylist'),
            denylist_enabled=bool(cfg.get('denylist_enabled', True)),
            max_code_bytes=int(
                cfg.get('MAX_CODE_BYTES', config.MAX_CODE_BYTES)),
            max_test_cases=int(
                cfg.get('MAX_TEST_CASES', config.MAX_TEST_CASES)),
            max_time_limit_ms=int(
                cfg.get('MAX_TIME_LIMIT_MS', config.MAX_TIME_LIMIT_MS)),
            max_memory_mb=int(cfg.get('MAX_MEMORY_MB', config.MAX_MEMORY_MB)),
        )

    def violations(self, request: ExecutionRequest) -> List[str]:
        errors = []
        if not self.registry.supports(request.language):
            errors.append(f'Unsupported language: {request.language}')
        code_size = len(request.code.encode('utf-8'))
        if code_size == 0 or not request.code.strip():
            errors.append('Code cannot be empty')
        elif code_size > self.max_code_bytes:
            errors.append(
                f'Code size exceeds limit ({self.max_code_bytes} bytes)')
        case_count = len(request.test_cases)
        if case_count == 0:
            errors.append('At least one test case is required')
        elif case_count > self.max_test_cases:
            errors.append(
                f'Too many test cases (max {self.max_test_cases})')
        for i, case in enumerate(request.test_cases):
            if case.weight is not None and case.weight < 0:
                errors.append(f'Test case {i + 1} has a negative weight')
        limits = request.limits
        if limits.time_limit_ms <= 0:
            errors.append('Time limit must be positive')
        elif limits.time_limit_ms > self.max_time_limit_ms:
            errors.append('Time limit too high '
                          f'(max {self.max_time_limit_ms} ms)')
        if limits.memory_mb <= 0:
            errors.append('Memory limit must be positive')
        elif limits.memory_mb > self.max_memory_mb:
            errors.append(f'Memory limit too high (max {self.max_memory_mb} MB)')
        if self.denylist_enabled:
            errors.extend(scan_denylist(request.code, self.denylist))
        return errors

    def validate(self, raw) -> ExecutionRequest:
        '''Return a normalized, immutable request or raise ValidationError.'''
        if isinstance(raw, ExecutionRequest):
            request = raw
        else:
            try:
                request = ExecutionRequest.model_validate(raw)
            except PydanticValidationError as exc:
                raise ValidationError(_shape_violations(exc)) from exc
        errors = self.violations(request)
        if errors:
            logger().debug(f'reject request: {errors}')
            raise ValidationError(errors)
        return request.model_copy(
            update={'language': self.registry.resolve(request.language)})
