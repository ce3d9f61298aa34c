from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from judge.meta import ExecutionRequest, Limits, TestCase


class Job(BaseModel):
    '''Queued evaluation of one submission, as produced on acceptance.'''
    model_config = ConfigDict(populate_by_name=True)

    submissionId: str
    code: str
    language: str
    problemId: Optional[str] = None
    contestId: Optional[str] = None
    userId: Optional[str] = None
    testCases: List[TestCase] = Field(default_factory=list)
    limits: Limits = Field(default_factory=Limits)
    points: int = 0
    # bookkeeping owned by the queue
    attempts: int = 0

    @field_validator('limits', mode='before')
    @classmethod
    def _seconds_to_ms(cls, v):
        # producers send {timeLimit: seconds, memoryLimit: MB}
        if isinstance(v, dict) and 'timeLimit' in v:
            v = dict(v)
            seconds = v.pop('timeLimit')
            v.setdefault('time_limit_ms', int(float(seconds) * 1000))
        return Limits() if v is None else v

    def to_request(self) -> ExecutionRequest:
        return ExecutionRequest(
            language=self.language,
            code=self.code,
            test_cases=self.testCases,
            limits=self.limits,
        )
