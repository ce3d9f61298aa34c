from typing import List

from .constant import Verdict


def strip(s: str) -> List[str]:
    '''Lines of ``s`` with line endings unified and trailing space removed.'''
    s = s.replace('\r\n', '\n').replace('\r', '\n').strip()
    # strip trailing space for each line
    ss = [line.rstrip() for line in s.split('\n')]
    # strip redundant new line
    while len(ss) and ss[-1] == '':
        del ss[-1]
    return ss


def normalize(s: str) -> str:
    return '\n'.join(strip(s))


def compare(actual: str, expected: str) -> Verdict:
    '''Exact comparison after normalization, the same for every language.'''
    if normalize(actual) == normalize(expected):
        return Verdict.AC
    return Verdict.WA
