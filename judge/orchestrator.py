'''
Test orchestrator.

Drives one submission through ``pending -> compiling -> running -> verdict``.
Test cases run sequentially in input order so the early-stop policy can
look at every completed case before deciding to continue. Per-case problems
become outcomes; only infrastructure faults escape ``evaluate``.
'''
from typing import Callable, List, Optional

from . import config
from .comparator import compare
from .compiler import Compiler
from .constant import (
    FATAL_VERDICTS,
    VERDICT_PRECEDENCE,
    EarlyStopPolicy,
    Stage,
    Verdict,
)
from .executor import ProcessExecutor, classify
from .languages import LanguageAdapter, LanguageRegistry
from .meta import AggregateResult, ExecutionOutcome, ExecutionRequest
from .utils import logger, truncate
from .workspace import scratch_workspace

StateObserver = Callable[[str], None]


def worst_verdict(verdicts) -> Verdict:
    verdicts = [*verdicts]
    if not verdicts:
        return Verdict.AC
    return max(verdicts, key=VERDICT_PRECEDENCE.__getitem__)


def compute_score(request: ExecutionRequest,
                  outcomes: List[ExecutionOutcome]) -> float:
    cases = request.test_cases
    if not cases:
        return 0.0
    passed = {o.index for o in outcomes if o.passed}
    if all(c.weight is None for c in cases):
        return len(passed) / len(cases)
    weights = [1.0 if c.weight is None else c.weight for c in cases]
    total = sum(weights)
    if total <= 0:
        return len(passed) / len(cases)
    return sum(w for i, w in enumerate(weights) if i in passed) / total


def should_stop(verdict: Verdict, policy: EarlyStopPolicy) -> bool:
    if policy == EarlyStopPolicy.STOP_ON_FIRST_FAILURE:
        return verdict != Verdict.AC
    return verdict in FATAL_VERDICTS


class TestOrchestrator:
    __test__ = False

    def __init__(
        self,
        registry: Optional[LanguageRegistry] = None,
        compiler: Optional[Compiler] = None,
        executor: Optional[ProcessExecutor] = None,
        policy: EarlyStopPolicy | str = config.EARLY_STOP_POLICY,
        scratch_root=None,
        report_limit: int = config.REPORT_OUTPUT_LIMIT,
    ):
        self.registry = registry or LanguageRegistry()
        self.compiler = compiler or Compiler()
        self.executor = executor or ProcessExecutor()
        self.policy = EarlyStopPolicy(policy)
        self.scratch_root = scratch_root
        self.report_limit = report_limit

    @classmethod
    def from_config(cls, cfg: dict, registry: LanguageRegistry = None):
        return cls(
            registry=registry or LanguageRegistry.from_config(cfg),
            policy=cfg.get('early_stop_policy', config.EARLY_STOP_POLICY),
            scratch_root=cfg.get('scratch_root'),
        )

    def evaluate(
        self,
        request: ExecutionRequest,
        submission_id: Optional[str] = None,
        observer: Optional[StateObserver] = None,
    ) -> AggregateResult:
        notify = observer or (lambda state: None)
        adapter = self.registry.get(request.language)
        notify(Stage.PENDING.value)
        with scratch_workspace(
                adapter,
                request.code,
                submission_id=submission_id,
                root=self.scratch_root,
        ) as workdir:
            if adapter.needs_compile:
                notify(Stage.COMPILING.value)
                compiled = self.compiler.compile(adapter, workdir)
                if not compiled.ok:
                    logger().info(
                        f'compile error [id={submission_id}, lang={adapter.name}]'
                    )
                    result = AggregateResult(
                        verdict=Verdict.CE,
                        passed=0,
                        total=len(request.test_cases),
                        compile_output=truncate(compiled.message,
                                                self.report_limit),
                    )
                    notify(result.verdict.value)
                    return result
            notify(Stage.RUNNING.value)
            outcomes = self._run_cases(adapter, workdir, request,
                                       submission_id)
        result = self._aggregate(request, outcomes)
        logger().info(f'evaluation finished [id={submission_id}, '
                      f'verdict={result.verdict.value}, '
                      f'passed={result.passed}/{result.total}]')
        notify(result.verdict.value)
        return result

    def _run_cases(
        self,
        adapter: LanguageAdapter,
        workdir,
        request: ExecutionRequest,
        submission_id: Optional[str],
    ) -> List[ExecutionOutcome]:
        outcomes = []
        for index, case in enumerate(request.test_cases):
            outcome = self._run_case(adapter, workdir, request, index)
            outcomes.append(outcome)
            logger().debug(f'case done [id={submission_id}, case={index}, '
                           f'verdict={outcome.verdict.value}]')
            if should_stop(outcome.verdict, self.policy):
                if index + 1 < len(request.test_cases):
                    logger().info(
                        f'early stop after {outcome.verdict.value} '
                        f'[id={submission_id}, case={index}]')
                break
        return outcomes

    def _run_case(self, adapter, workdir, request, index) -> ExecutionOutcome:
        case = request.test_cases[index]
        res = self.executor.execute(adapter, workdir, case.input,
                                    request.limits)
        verdict, message = classify(res)
        if verdict is None:
            verdict = compare(res.stdout, case.expected_output)
            message = 'Accepted' if verdict == Verdict.AC else 'Wrong Answer'
        elif verdict == Verdict.TLE:
            message = (f'{message} ({request.limits.time_limit_ms} ms)')
        if (res.memory_kb > 0
                and res.memory_kb > request.limits.memory_mb * 1024):
            message += ' (memory usage above the advisory limit)'
        return ExecutionOutcome(
            index=index,
            verdict=verdict,
            passed=verdict == Verdict.AC,
            time_ms=res.duration_ms,
            memory_kb=res.memory_kb,
            stdout=truncate(res.stdout, self.report_limit),
            stderr=truncate(res.stderr, self.report_limit),
            message=message,
            hidden=case.hidden,
        )

    def _aggregate(self, request: ExecutionRequest,
                   outcomes: List[ExecutionOutcome]) -> AggregateResult:
        memories = [o.memory_kb for o in outcomes if o.memory_kb > 0]
        return AggregateResult(
            verdict=worst_verdict(o.verdict for o in outcomes),
            passed=sum(1 for o in outcomes if o.passed),
            total=len(request.test_cases),
            runtime_ms=sum(max(o.time_ms, 0) for o in outcomes),
            memory_kb=max(memories, default=0),
            score=compute_score(request, outcomes),
            stopped_early=len(outcomes) < len(request.test_cases),
            outcomes=outcomes,
        )
