from enum import Enum


class Language(str, Enum):
    PYTHON = 'python'
    C = 'c'
    CPP = 'cpp'
    JAVA = 'java'
    JAVASCRIPT = 'javascript'


class Verdict(str, Enum):
    AC = 'AC'
    WA = 'WA'
    TLE = 'TLE'
    RE = 'RE'
    CE = 'CE'


class SubmissionStatus(str, Enum):
    PENDING = 'pending'
    RUNNING = 'running'
    AC = 'AC'
    WA = 'WA'
    TLE = 'TLE'
    RE = 'RE'
    CE = 'CE'


class Stage(str, Enum):
    PENDING = 'pending'
    COMPILING = 'compiling'
    RUNNING = 'running'


class EarlyStopPolicy(str, Enum):
    # keep running through WA, stop on TLE/RE/CE
    STOP_ON_FATAL = 'stop_on_fatal'
    # stop on the first case that is not AC
    STOP_ON_FIRST_FAILURE = 'stop_on_first_failure'


# worst verdict wins when aggregating
VERDICT_PRECEDENCE = {
    Verdict.AC: 0,
    Verdict.WA: 1,
    Verdict.RE: 2,
    Verdict.TLE: 3,
    Verdict.CE: 4,
}

FATAL_VERDICTS = frozenset({Verdict.TLE, Verdict.RE, Verdict.CE})

# status returned to synchronous callers on infrastructure faults
ERROR_STATUS = 'ERROR'
VALIDATION_ERROR_STATUS = 'VALIDATION_ERROR'

VERDICT_LABELS = {
    Verdict.AC: 'accepted',
    Verdict.WA: 'wrong_answer',
    Verdict.TLE: 'time_limit_exceeded',
    Verdict.RE: 'runtime_error',
    Verdict.CE: 'compilation_error',
}


class Effect(str, Enum):
    CONTEST_SCORE = 'contestScore'
    PROBLEM_STATS = 'problemStats'
    USER_STATS = 'userStats'
