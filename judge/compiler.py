import dataclasses
from pathlib import Path

from . import config
from .exception import ToolchainNotFoundError
from .executor import run_process
from .languages import LanguageAdapter
from .utils import logger, truncate


@dataclasses.dataclass
class CompileResult:
    ok: bool
    stdout: str = ''
    stderr: str = ''
    duration_ms: int = 0
    timed_out: bool = False

    @property
    def message(self) -> str:
        if self.ok:
            return ''
        if self.timed_out:
            return 'Compilation timed out'
        return self.stderr or self.stdout or 'Compilation Error'


class Compiler:
    '''Runs the build step of compiled languages inside the scratch dir.

    A non-zero exit or a timeout is a compile error; a missing toolchain is
    an infrastructure fault and propagates as ``ToolchainNotFoundError``.
    '''

    def __init__(
        self,
        timeout_ms: int = config.COMPILE_TIMEOUT_MS,
        output_limit: int = config.OUTPUT_LIMIT_BYTES,
    ):
        self.timeout_ms = timeout_ms
        self.output_limit = output_limit

    def compile(self, adapter: LanguageAdapter, workdir: Path) -> CompileResult:
        if not adapter.needs_compile:
            return CompileResult(ok=True)
        argv = adapter.compile_argv(workdir)
        logger().debug(f'compile command: {argv}')
        try:
            res = run_process(
                argv,
                timeout_ms=self.timeout_ms,
                cwd=workdir,
                output_limit=self.output_limit,
            )
        except ToolchainNotFoundError:
            logger().error(f'compiler not installed [lang={adapter.name}]')
            raise
        ok = (not res.timed_out and not res.output_exceeded
              and res.exit_code == 0)
        if ok and adapter.artifact_name:
            ok = (workdir / adapter.artifact_name).exists()
        return CompileResult(
            ok=ok,
            stdout=truncate(res.stdout, config.REPORT_OUTPUT_LIMIT),
            stderr=truncate(res.stderr, config.REPORT_OUTPUT_LIMIT),
            duration_ms=res.duration_ms,
            timed_out=res.timed_out,
        )
