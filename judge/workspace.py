import contextlib
import re
import shutil
import tempfile
from pathlib import Path
from typing import Iterator, Optional

from . import config
from .exception import ScratchDirectoryError
from .languages import LanguageAdapter
from .utils import logger

_UNSAFE = re.compile(r'[^A-Za-z0-9_.-]')


@contextlib.contextmanager
def scratch_workspace(
    adapter: LanguageAdapter,
    code: str,
    submission_id: Optional[str] = None,
    root: Optional[Path] = None,
) -> Iterator[Path]:
    '''Private directory holding the source and any compiled artifact.

    The directory name is unique per evaluation so concurrent workers never
    share files, and it is removed on every exit path.
    '''
    root = Path(root or config.SCRATCH_ROOT)
    prefix = _UNSAFE.sub('_', submission_id or 'run')[:48] + '-'
    try:
        root.mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix=prefix, dir=root)).absolute()
    except OSError as exc:
        raise ScratchDirectoryError(
            f'failed to create scratch directory: {exc}') from exc
    logger().debug(f'scratch directory created [path={workdir}]')
    try:
        try:
            (workdir / adapter.source_name).write_text(code, encoding='utf-8')
        except OSError as exc:
            raise ScratchDirectoryError(
                f'failed to write source file: {exc}') from exc
        yield workdir
    finally:
        shutil.rmtree(workdir, ignore_errors=True)
        if workdir.exists():
            logger().warning('scratch directory not removed [path=%s]',
                             workdir)
