'''
Process executor.

One fresh OS process per (program, input) pair. The process runs in its
own session so that the whole group (including anything it forks) can be
SIGKILLed when the wall-clock limit expires; the runtime is never asked to
stop cooperatively. Captured output is capped so a chatty program cannot
exhaust the harness memory.
'''
import dataclasses
import os
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import List, Optional, Tuple

from . import config
from .constant import Verdict
from .exception import InfrastructureError, ToolchainNotFoundError
from .languages import LanguageAdapter
from .meta import Limits
from .utils import logger

_CHUNK_SIZE = 64 * 1024
# after a kill the pipes should close almost immediately
_JOIN_TIMEOUT = 1.0


@dataclasses.dataclass
class ProcessResult:
    exit_code: Optional[int]
    stdout: str
    stderr: str
    duration_ms: int
    memory_kb: int = -1
    timed_out: bool = False
    output_exceeded: bool = False


class _CappedReader(threading.Thread):

    def __init__(self, stream, limit: int, overflow: threading.Event):
        super().__init__(daemon=True)
        self.stream = stream
        self.limit = limit
        self.overflow = overflow
        self.chunks = []
        self.size = 0
        self.exceeded = False

    def run(self):
        try:
            while True:
                chunk = self.stream.read1(_CHUNK_SIZE)
                if not chunk:
                    break
                if self.exceeded:
                    # keep draining so the child never blocks on a full pipe
                    continue
                room = self.limit - self.size
                if len(chunk) > room:
                    chunk = chunk[:max(room, 0)]
                    self.exceeded = True
                    self.overflow.set()
                self.chunks.append(chunk)
                self.size += len(chunk)
        except (OSError, ValueError):
            pass
        finally:
            try:
                self.stream.close()
            except OSError:
                pass

    def text(self) -> str:
        return b''.join(self.chunks).decode('utf-8', errors='replace')


def _feed_stdin(stream, data: bytes):
    try:
        if data:
            stream.write(data)
    except (BrokenPipeError, OSError):
        # the program is not obliged to read its input
        pass
    finally:
        try:
            stream.close()
        except OSError:
            pass


def _peak_rss_kb(pid: int) -> int:
    try:
        with open(f'/proc/{pid}/status') as f:
            for line in f:
                if line.startswith('VmHWM:'):
                    return int(line.split()[1])
    except (OSError, ValueError, IndexError):
        pass
    return -1


def _address_space_limiter(memory_mb: int):

    def apply():
        import resource
        limit = memory_mb * 1024 * 1024
        resource.setrlimit(resource.RLIMIT_AS, (limit, limit))

    return apply


def _kill_group(proc: subprocess.Popen):
    try:
        if hasattr(os, 'killpg'):
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except (ProcessLookupError, PermissionError):
        pass


def run_process(
    argv: List[str],
    stdin_data: str = '',
    timeout_ms: int = 1000,
    cwd: Optional[Path] = None,
    output_limit: int = config.OUTPUT_LIMIT_BYTES,
    memory_limit_mb: Optional[int] = None,
    env: Optional[dict] = None,
    poll_interval: float = 0.01,
) -> ProcessResult:
    '''Run ``argv`` to completion or until ``timeout_ms`` elapses.

    Blocks the calling thread; the return value always describes a process
    that is no longer running.
    '''
    popen_kwargs = {}
    if os.name == 'posix':
        popen_kwargs['start_new_session'] = True
        if memory_limit_mb:
            popen_kwargs['preexec_fn'] = _address_space_limiter(
                memory_limit_mb)
    start = time.monotonic()
    try:
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            env=env,
            **popen_kwargs,
        )
    except FileNotFoundError as exc:
        raise ToolchainNotFoundError(
            f'executable not found: {argv[0]}') from exc
    except OSError as exc:
        raise InfrastructureError(f'failed to spawn {argv[0]}: {exc}') from exc

    overflow = threading.Event()
    readers = [
        _CappedReader(proc.stdout, output_limit, overflow),
        _CappedReader(proc.stderr, output_limit, overflow),
    ]
    writer = threading.Thread(
        target=_feed_stdin,
        args=(proc.stdin, (stdin_data or '').encode('utf-8')),
        daemon=True,
    )
    for t in (writer, *readers):
        t.start()

    deadline = start + timeout_ms / 1000.0
    peak_kb = -1
    timed_out = False
    while proc.poll() is None:
        peak_kb = max(peak_kb, _peak_rss_kb(proc.pid))
        if overflow.is_set():
            _kill_group(proc)
            break
        if time.monotonic() >= deadline:
            timed_out = True
            _kill_group(proc)
            break
        time.sleep(poll_interval)
    proc.wait()
    duration_ms = int((time.monotonic() - start) * 1000)
    # reap anything the program left behind in its group
    _kill_group(proc)
    writer.join(_JOIN_TIMEOUT)
    for r in readers:
        r.join(_JOIN_TIMEOUT)
        if r.is_alive():
            logger().warning('output reader still alive [argv=%s]', argv[0])
    return ProcessResult(
        exit_code=proc.returncode,
        stdout=readers[0].text(),
        stderr=readers[1].text(),
        duration_ms=duration_ms,
        memory_kb=peak_kb,
        timed_out=timed_out,
        output_exceeded=any(r.exceeded for r in readers),
    )


def classify(result: ProcessResult) -> Tuple[Optional[Verdict], str]:
    '''Map a finished process to TLE/RE, or ``None`` for a clean exit.'''
    if result.timed_out:
        return Verdict.TLE, 'Time Limit Exceeded'
    if result.output_exceeded:
        return Verdict.RE, 'Output Limit Exceeded'
    if result.exit_code is not None and result.exit_code < 0:
        try:
            name = signal.Signals(-result.exit_code).name
        except ValueError:
            name = str(-result.exit_code)
        return Verdict.RE, f'Runtime Error (killed by {name})'
    if result.exit_code != 0:
        return Verdict.RE, f'Runtime Error (exit code {result.exit_code})'
    return None, 'Execution completed'


class ProcessExecutor:

    def __init__(
        self,
        output_limit: int = config.OUTPUT_LIMIT_BYTES,
        enforce_memory_limit: bool = config.ENFORCE_MEMORY_LIMIT,
    ):
        self.output_limit = output_limit
        self.enforce_memory_limit = enforce_memory_limit

    def execute(
        self,
        adapter: LanguageAdapter,
        workdir: Path,
        case_input: str,
        limits: Limits,
    ) -> ProcessResult:
        return run_process(
            adapter.run_argv(workdir),
            stdin_data=case_input,
            timeout_ms=limits.time_limit_ms,
            cwd=workdir,
            output_limit=self.output_limit,
            memory_limit_mb=(limits.memory_mb
                             if self.enforce_memory_limit else None),
        )
