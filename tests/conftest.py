import sys

import pytest

from judge.compiler import Compiler
from judge.executor import ProcessExecutor, ProcessResult
from judge.languages import LanguageRegistry
from judge.orchestrator import TestOrchestrator
from judge.validator import Validator
from pipeline.effects import PARTICIPANTS, PROBLEMS, SUBMISSIONS, USERS
from pipeline.job import Job
from pipeline.notifier import Notifier
from pipeline.store import MemoryStore

PYTHON = sys.executable

SUM_CODE = 'a, b = map(int, input().split())\nprint(a + b)\n'


class ScriptedExecutor:
    '''Executor returning canned process results, one per case.

    Each script item is a verdict name: ``AC`` echoes the input back,
    ``WA`` prints something else, ``RE`` exits non-zero and ``TLE`` is
    reported as killed at the deadline.
    '''

    def __init__(self, script):
        self.script = list(script)
        self.calls = 0

    def execute(self, adapter, workdir, case_input, limits):
        step = self.script[self.calls]
        self.calls += 1
        if step == 'AC':
            return ProcessResult(0, case_input, '', 5, memory_kb=1024)
        if step == 'WA':
            return ProcessResult(0, 'definitely wrong', '', 5, memory_kb=1024)
        if step == 'RE':
            return ProcessResult(1, '', 'Traceback', 5)
        if step == 'TLE':
            return ProcessResult(-9,
                                 '',
                                 '',
                                 limits.time_limit_ms,
                                 timed_out=True)
        raise ValueError(step)


class RecordingNotifier(Notifier):
    '''Keeps every published ``(topic, payload)`` pair.'''

    def __init__(self):
        self.published = []

    def publish(self, topic, payload):
        self.published.append((topic, payload))


class FakeEvaluator:
    '''Stand-in for the orchestrator used by the queue worker tests.'''

    def __init__(self, result=None, errors=()):
        self.result = result
        self.errors = list(errors)
        self.calls = 0

    def evaluate(self, request, submission_id=None, observer=None):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.fixture
def registry():
    return LanguageRegistry()


@pytest.fixture
def validator(registry):
    return Validator(registry=registry)


@pytest.fixture
def orchestrator(registry, tmp_path):
    return TestOrchestrator(
        registry=registry,
        compiler=Compiler(),
        executor=ProcessExecutor(),
        scratch_root=tmp_path / 'scratch',
    )


@pytest.fixture
def scripted_orchestrator(registry, tmp_path):

    def make(script, policy='stop_on_fatal'):
        return TestOrchestrator(
            registry=registry,
            executor=ScriptedExecutor(script),
            policy=policy,
            scratch_root=tmp_path / 'scratch',
        )

    return make


@pytest.fixture
def store():
    s = MemoryStore()
    s.insert(PROBLEMS, {
        '_id': 'p1',
        'stats': {
            'totalSubmissions': 0,
            'acceptedSubmissions': 0,
            'successRate': 0,
        },
    })
    s.insert(USERS, {
        '_id': 'u1',
        'stats': {
            'totalSubmissions': 0,
            'acceptedSubmissions': 0,
        },
    })
    s.insert(
        PARTICIPANTS, {
            '_id': 'c1:u1',
            'contestId': 'c1',
            'userId': 'u1',
            'score': 0,
            'solvedProblems': [],
            'submissions': [],
        })
    return s


@pytest.fixture
def make_job(store):

    def make(submission_id='s1', **kwargs):
        data = {
            'submissionId': submission_id,
            'code': SUM_CODE,
            'language': 'python',
            'problemId': 'p1',
            'contestId': 'c1',
            'userId': 'u1',
            'testCases': [{
                'input': '1 2',
                'expectedOutput': '3',
            }],
            'limits': {
                'timeLimit': 1,
                'memoryLimit': 128,
            },
            'points': 100,
        }
        data.update(kwargs)
        job = Job.model_validate(data)
        if store.find_by_id(SUBMISSIONS, submission_id) is None:
            store.insert(
                SUBMISSIONS, {
                    '_id': submission_id,
                    'status': 'pending',
                    'contestId': job.contestId,
                    'problemId': job.problemId,
                    'userId': job.userId,
                })
        return job

    return make


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def fake_evaluator():
    return FakeEvaluator
