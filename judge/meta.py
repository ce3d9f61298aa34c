from typing import List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

from . import config
from .constant import Verdict


class TestCase(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    input: str = ''
    expected_output: str = Field(
        default='',
        validation_alias=AliasChoices('expected_output', 'expectedOutput',
                                      'output'),
    )
    weight: Optional[float] = None
    hidden: bool = False

    @field_validator('input', 'expected_output', mode='before')
    @classmethod
    def _coerce_text(cls, v):
        if v is None:
            return ''
        if isinstance(v, (int, float)):
            return str(v)
        return v


class Limits(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    time_limit_ms: int = Field(
        default=config.DEFAULT_TIME_LIMIT_MS,
        validation_alias=AliasChoices('time_limit_ms', 'timeLimitMs'),
    )
    memory_mb: int = Field(
        default=config.DEFAULT_MEMORY_MB,
        validation_alias=AliasChoices('memory_mb', 'memoryMb', 'memoryLimit'),
    )


class ExecutionRequest(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    language: str
    code: str
    test_cases: List[TestCase] = Field(
        default_factory=list,
        validation_alias=AliasChoices('test_cases', 'testcases', 'testCases'),
    )
    limits: Limits = Field(
        default_factory=Limits,
        validation_alias=AliasChoices('limits', 'constraints'),
    )

    @field_validator('limits', mode='before')
    @classmethod
    def _default_limits(cls, v):
        return Limits() if v is None else v


class ExecutionOutcome(BaseModel):
    index: int
    verdict: Verdict
    passed: bool
    time_ms: int = -1
    memory_kb: int = -1
    stdout: str = ''
    stderr: str = ''
    message: str = ''
    hidden: bool = False


class AggregateResult(BaseModel):
    verdict: Verdict
    passed: int = 0
    total: int = 0
    runtime_ms: int = 0
    memory_kb: int = 0
    score: float = 0.0
    compile_output: str = ''
    stopped_early: bool = False
    outcomes: List[ExecutionOutcome] = Field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.verdict == Verdict.AC
