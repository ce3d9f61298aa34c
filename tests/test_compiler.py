import shutil

import pytest

from judge.compiler import Compiler
from judge.constant import Verdict
from judge.exception import ToolchainNotFoundError
from judge.languages import LanguageAdapter
from judge.meta import ExecutionRequest

needs_gcc = pytest.mark.skipif(shutil.which('gcc') is None,
                               reason='gcc is not installed')
needs_gxx = pytest.mark.skipif(shutil.which('g++') is None,
                               reason='g++ is not installed')

C_SUM = '''
#include <stdio.h>
int main() {
    int a, b;
    scanf("%d %d", &a, &b);
    printf("%d\\n", a + b);
    return 0;
}
'''


def test_interpreted_language_skips_compile(registry, tmp_path):
    assert Compiler().compile(registry.get('python'), tmp_path).ok


@needs_gcc
def test_compile_c(registry, tmp_path):
    adapter = registry.get('c')
    (tmp_path / adapter.source_name).write_text(C_SUM)
    res = Compiler().compile(adapter, tmp_path)
    assert res.ok
    assert (tmp_path / 'main').exists()


@needs_gcc
def test_compile_error_carries_diagnostics(registry, tmp_path):
    adapter = registry.get('c')
    (tmp_path / adapter.source_name).write_text('int main( { return 0; }')
    res = Compiler().compile(adapter, tmp_path)
    assert not res.ok
    assert 'error' in res.message


def test_missing_toolchain_is_infrastructure_error(tmp_path):
    adapter = LanguageAdapter(
        name='imaginary',
        source_name='main.im',
        compile_command=['imaginary-compiler-xyz', '{source}'],
        artifact_name='main',
        run_command=['{artifact}'],
    )
    (tmp_path / 'main.im').write_text('')
    with pytest.raises(ToolchainNotFoundError):
        Compiler().compile(adapter, tmp_path)


@needs_gcc
def test_c_end_to_end(orchestrator):
    request = ExecutionRequest.model_validate({
        'language': 'c',
        'code': C_SUM,
        'testcases': [{
            'input': '1 2',
            'expected_output': '3'
        }, {
            'input': '5 7',
            'expected_output': '12'
        }],
    })
    result = orchestrator.evaluate(request)
    assert result.verdict == Verdict.AC
    assert result.passed == 2


@needs_gxx
def test_cpp_compile_error_runs_nothing(orchestrator):
    request = ExecutionRequest.model_validate({
        'language': 'cpp',
        'code': 'int main() { return undefined_name; }',
        'testcases': [{
            'input': '',
            'expected_output': ''
        }] * 3,
    })
    result = orchestrator.evaluate(request)
    assert result.verdict == Verdict.CE
    assert result.outcomes == []
    assert result.total == 3
    assert result.compile_output
