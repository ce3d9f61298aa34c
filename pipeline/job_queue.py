'''
Durable job queue with at-least-once delivery.

Jobs are spooled to ``spool_dir`` (one JSON file per delivery) until they
are acknowledged, so a restart re-delivers whatever was queued or in flight.
A delivery is leased to exactly one worker at a time, and two deliveries of
the same submission are never leased concurrently.
'''
import collections
import dataclasses
import heapq
import itertools
import queue
import threading
import time
import uuid
from pathlib import Path
from typing import Optional

from judge.exception import InfrastructureError
from judge.utils import logger
from .job import Job


@dataclasses.dataclass(frozen=True)
class Lease:
    delivery_id: str
    job: Job


class JobQueue:

    def __init__(self, maxsize: int = 0, spool_dir=None):
        self.maxsize = maxsize
        self.spool_dir = Path(spool_dir) if spool_dir else None
        self._cond = threading.Condition()
        self._entries = {}
        self._ready = collections.deque()
        self._delayed = []
        self._seq = itertools.count()
        # delivery id -> submission id
        self._leases = {}
        if self.spool_dir:
            self.spool_dir.mkdir(parents=True, exist_ok=True)
            self.recover()

    def _spool_path(self, delivery_id: str) -> Path:
        return self.spool_dir / f'{delivery_id}.json'

    def _spool(self, delivery_id: str, job: Job):
        if not self.spool_dir:
            return
        path = self._spool_path(delivery_id)
        tmp = path.with_suffix('.tmp')
        try:
            tmp.write_text(job.model_dump_json())
            tmp.replace(path)
        except OSError as exc:
            raise InfrastructureError(f'failed to spool job: {exc}') from exc

    def _unspool(self, delivery_id: str):
        if not self.spool_dir:
            return
        try:
            self._spool_path(delivery_id).unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger().warning('failed to remove spooled job [id=%s]: %s',
                             delivery_id, exc)

    def recover(self) -> int:
        '''Reload spooled deliveries, e.g. after a crash.'''
        count = 0
        with self._cond:
            for path in sorted(self.spool_dir.glob('*.json')):
                delivery_id = path.stem
                if delivery_id in self._entries:
                    continue
                try:
                    job = Job.model_validate_json(path.read_text())
                except (OSError, ValueError) as exc:
                    logger().error(
                        f'drop unreadable spooled job [file={path}]: {exc}')
                    continue
                self._entries[delivery_id] = job
                self._ready.append(delivery_id)
                count += 1
            self._cond.notify_all()
        if count:
            logger().info(f'recovered {count} spooled job(s)')
        return count

    def put(self, job: Job, delay: float = 0.0) -> str:
        with self._cond:
            if self.maxsize and self.qsize() >= self.maxsize:
                raise queue.Full
            delivery_id = uuid.uuid4().hex
            self._spool(delivery_id, job)
            self._entries[delivery_id] = job
            self._schedule(delivery_id, delay)
            self._cond.notify()
        return delivery_id

    def _schedule(self, delivery_id: str, delay: float):
        if delay > 0:
            heapq.heappush(
                self._delayed,
                (time.monotonic() + delay, next(self._seq), delivery_id))
        else:
            self._ready.append(delivery_id)

    def _promote_due(self):
        now = time.monotonic()
        while self._delayed and self._delayed[0][0] <= now:
            _, _, delivery_id = heapq.heappop(self._delayed)
            self._ready.append(delivery_id)

    def _take_ready(self) -> Optional[Lease]:
        busy = set(self._leases.values())
        for delivery_id in self._ready:
            job = self._entries[delivery_id]
            if job.submissionId in busy:
                continue
            self._ready.remove(delivery_id)
            self._leases[delivery_id] = job.submissionId
            return Lease(delivery_id=delivery_id, job=job)
        return None

    def get(self, timeout: Optional[float] = None) -> Optional[Lease]:
        '''Lease the next available job, or return None on timeout.'''
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                self._promote_due()
                lease = self._take_ready()
                if lease:
                    return lease
                wait = None
                if self._delayed:
                    wait = max(self._delayed[0][0] - time.monotonic(), 0)
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def ack(self, lease: Lease):
        with self._cond:
            self._leases.pop(lease.delivery_id, None)
            self._entries.pop(lease.delivery_id, None)
            self._unspool(lease.delivery_id)
            self._cond.notify_all()

    def retry(self, lease: Lease, job: Job, delay: float):
        '''Give the job back with a new payload, available after ``delay``.'''
        with self._cond:
            self._spool(lease.delivery_id, job)
            self._entries[lease.delivery_id] = job
            self._leases.pop(lease.delivery_id, None)
            self._schedule(lease.delivery_id, delay)
            self._cond.notify_all()

    def release(self, lease: Lease, delay: float = 0.0):
        '''Give the job back unchanged, at the front unless delayed.'''
        with self._cond:
            self._leases.pop(lease.delivery_id, None)
            if delay > 0:
                self._schedule(lease.delivery_id, delay)
            else:
                self._ready.appendleft(lease.delivery_id)
            self._cond.notify_all()

    def qsize(self) -> int:
        return len(self._entries) - len(self._leases)

    def in_flight(self) -> int:
        return len(self._leases)

    def empty(self) -> bool:
        return self.qsize() == 0
