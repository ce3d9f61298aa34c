import json
import os
from pathlib import Path

# sandbox service (used by the client and the queue worker)
SANDBOX_URL = os.getenv(
    'SANDBOX_URL',
    'http://localhost:3001',
)
SANDBOX_TOKEN = os.getenv(
    'SANDBOX_TOKEN',
    'KoNoSandboxDa',
)
# notification sink, empty means log only
NOTIFY_URL = os.getenv('NOTIFY_URL', '')
SCRATCH_ROOT = Path(os.getenv(
    'SCRATCH_ROOT',
    'scratch',
))
JOB_SPOOL_DIR = os.getenv('JOB_SPOOL_DIR', '')
# backend api holding submissions, problems, users and contests
BACKEND_API = os.getenv(
    'BACKEND_API',
    'http://web:8080',
)

_DEFAULT_SANDBOX_CONFIG_PATH = Path(
    os.getenv('SANDBOX_CONFIG', '.config/sandbox.json'))

# ============================================================
# Request ceilings
# ============================================================
MAX_CODE_BYTES = int(os.getenv('MAX_CODE_BYTES', '50000'))
MAX_TEST_CASES = int(os.getenv('MAX_TEST_CASES', '100'))
MAX_TIME_LIMIT_MS = int(os.getenv('MAX_TIME_LIMIT_MS', '10000'))
MAX_MEMORY_MB = int(os.getenv('MAX_MEMORY_MB', '512'))
DEFAULT_TIME_LIMIT_MS = 2000
DEFAULT_MEMORY_MB = 256

# ============================================================
# Execution
# ============================================================
COMPILE_TIMEOUT_MS = int(os.getenv('COMPILE_TIMEOUT_MS', '10000'))
OUTPUT_LIMIT_BYTES = int(os.getenv('OUTPUT_LIMIT_BYTES', str(1024 * 1024)))
# stdout/stderr kept per case in reported results
REPORT_OUTPUT_LIMIT = int(os.getenv('REPORT_OUTPUT_LIMIT', str(64 * 1024)))
ENFORCE_MEMORY_LIMIT = os.getenv('ENFORCE_MEMORY_LIMIT',
                                 'false').lower() == 'true'
EARLY_STOP_POLICY = os.getenv('EARLY_STOP_POLICY', 'stop_on_fatal')

# ============================================================
# Submission queue
# ============================================================
HEALTH_TIMEOUT = float(os.getenv('HEALTH_TIMEOUT', '5'))
CLIENT_TIMEOUT = float(os.getenv('CLIENT_TIMEOUT', '60'))

# advisory only, see judge.validator
DEFAULT_DENYLIST = [
    'import os',
    'import subprocess',
    'eval(',
    'exec(',
    '__import__',
    'open(',
    'file(',
    'System.exit',
    'Runtime.getRuntime',
    'ProcessBuilder',
    'system(',
    'popen(',
    'fork(',
    'execve(',
]


def _load_sandbox_config(path: Path) -> dict:
    try:
        with path.open() as f:
            return json.load(f)
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError:
        return {}


def get_sandbox_config(config_path: str | Path | None = None) -> dict:
    path = Path(
        config_path) if config_path else _DEFAULT_SANDBOX_CONFIG_PATH
    cfg = _load_sandbox_config(path) if path else {}
    cfg.setdefault('languages', {})
    cfg.setdefault('denylist', DEFAULT_DENYLIST)
    cfg.setdefault('denylist_enabled', True)
    return cfg


def get_dispatcher_limits(
        config_path: str | Path | None = None) -> tuple[int, int]:
    path = Path(
        config_path) if config_path else _DEFAULT_SANDBOX_CONFIG_PATH
    cfg = _load_sandbox_config(path) if path else {}
    queue_default = cfg.get('QUEUE_SIZE', 64)
    worker_default = cfg.get('WORKER_COUNT', 4)
    queue_size = int(os.getenv('QUEUE_SIZE', queue_default))
    worker_count = int(os.getenv('WORKER_COUNT', worker_default))
    return queue_size, worker_count


def get_retry_policy(
        config_path: str | Path | None = None) -> tuple[int, float]:
    path = Path(
        config_path) if config_path else _DEFAULT_SANDBOX_CONFIG_PATH
    cfg = _load_sandbox_config(path) if path else {}
    max_attempts = int(os.getenv('MAX_ATTEMPTS', cfg.get('MAX_ATTEMPTS', 3)))
    base_delay = float(
        os.getenv('RETRY_BASE_DELAY', cfg.get('RETRY_BASE_DELAY', 2.0)))
    return max_attempts, base_delay
