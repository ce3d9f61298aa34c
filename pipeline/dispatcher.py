import math
import threading
from datetime import datetime, timezone
from typing import Optional

from judge import config
from judge.constant import VERDICT_LABELS, SubmissionStatus, Verdict
from judge.exception import SubmissionNotFoundError, ValidationError
from judge.meta import AggregateResult
from judge.orchestrator import TestOrchestrator
from judge.result_factory import make_case_records
from judge.utils import logger
from judge.validator import Validator
from .effects import SUBMISSIONS, apply_side_effects
from .job import Job
from .job_queue import JobQueue, Lease
from .notifier import (
    SUBMISSION_RESULT,
    SUBMISSION_UPDATE,
    Notifier,
    contest_room,
    safe_publish,
    user_room,
)
from .store import DocumentStore

FINAL_STATUSES = frozenset(v.value for v in Verdict)
FAILURE_MESSAGE = 'Execution failed'


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def submission_score(result: AggregateResult, points: int) -> int:
    if result.accepted:
        return points
    return math.floor(result.score * points)


class Dispatcher(threading.Thread):
    '''Fixed pool of workers judging queued submissions.

    Each worker leases one job at a time, marks the submission ``running``,
    evaluates it, persists the result, applies the side effects and
    notifies. Infrastructure faults are retried with exponential backoff;
    once the attempts are exhausted the submission is marked ``RE``.
    '''

    def __init__(
        self,
        store: DocumentStore,
        notifier: Optional[Notifier] = None,
        evaluator=None,
        config_path=None,
        job_queue: Optional[JobQueue] = None,
        validator: Optional[Validator] = None,
        spool_dir=config.JOB_SPOOL_DIR,
    ):
        super().__init__(daemon=True)
        # read config
        queue_limit, worker_count = config.get_dispatcher_limits(config_path)
        self.MAX_TASK_COUNT = queue_limit
        self.WORKER_COUNT = worker_count
        self.max_attempts, self.base_delay = config.get_retry_policy(
            config_path)
        s_config = config.get_sandbox_config(config_path)
        self.queue = job_queue or JobQueue(queue_limit, spool_dir or None)
        self.store = store
        self.notifier = notifier
        self.evaluator = evaluator or TestOrchestrator.from_config(s_config)
        self.validator = validator or Validator.from_config(s_config)
        self.do_run = True
        self.poll_interval = 0.5
        self.workers = []

    def handle(self, job) -> str:
        '''Accept a job message; raise ``queue.Full`` when saturated.'''
        if not isinstance(job, Job):
            job = Job.model_validate(job)
        delivery_id = self.queue.put(job)
        logger().info(f'submission queued [id={job.submissionId}, '
                      f'delivery={delivery_id}]')
        return delivery_id

    def status(self) -> dict:
        return {
            'queued': self.queue.qsize(),
            'inFlight': self.queue.in_flight(),
            'workers': self.WORKER_COUNT,
            'maxQueueSize': self.MAX_TASK_COUNT,
        }

    def run(self):
        self.do_run = True
        logger().debug('start dispatcher loop')
        self.workers = [
            threading.Thread(
                target=self._work_loop,
                name=f'judge-worker-{i}',
                daemon=True,
            ) for i in range(self.WORKER_COUNT)
        ]
        for worker in self.workers:
            worker.start()
        for worker in self.workers:
            worker.join()
        logger().debug('exit dispatcher loop')

    def stop(self):
        self.do_run = False

    def _work_loop(self):
        while self.do_run:
            lease = self.queue.get(timeout=self.poll_interval)
            if lease is None:
                continue
            try:
                self.process(lease)
            except Exception as e:
                logger().error(
                    f'worker fault [id={lease.job.submissionId}]: {e}',
                    exc_info=True,
                )
                # keep the worker alive and hand the delivery back
                self.queue.release(lease, delay=self.base_delay)

    def process(self, lease: Lease) -> str:
        '''Judge one leased job. Returns what happened to the delivery.'''
        job = lease.job
        sid = job.submissionId
        try:
            self._judge(job)
        except SubmissionNotFoundError:
            logger().warning('drop job of unknown submission [id=%s]', sid)
            self.queue.ack(lease)
            return 'dropped'
        except ValidationError as e:
            logger().info(f'invalid job [id={sid}]: {e}')
            try:
                self._mark_failed(job, '; '.join(e.violations))
            except Exception as exc:
                logger().error(
                    f'failed to mark submission [id={sid}]: {exc}',
                    exc_info=True,
                )
                return self._retry_or_fail(lease)
            self.queue.ack(lease)
            return 'failed'
        except Exception as e:
            logger().error(
                f'judge failed [id={sid}, attempt={job.attempts + 1}]: {e}',
                exc_info=True,
            )
            return self._retry_or_fail(lease)
        self.queue.ack(lease)
        return 'done'

    def _retry_or_fail(self, lease: Lease) -> str:
        job = lease.job
        attempts = job.attempts + 1
        if attempts < self.max_attempts:
            delay = self.base_delay * 2**(attempts - 1)
            logger().info(f'retry submission [id={job.submissionId}, '
                          f'attempt={attempts + 1}, delay={delay}s]')
            self.queue.retry(
                lease,
                job.model_copy(update={'attempts': attempts}),
                delay,
            )
            return 'retry'
        logger().error(f'give up submission [id={job.submissionId}, '
                       f'attempts={attempts}]')
        try:
            self._mark_failed(job, FAILURE_MESSAGE)
        except Exception as e:
            logger().error(
                f'failed to mark submission [id={job.submissionId}]: {e}',
                exc_info=True,
            )
        self.queue.ack(lease)
        return 'failed'

    def _judge(self, job: Job):
        sid = job.submissionId
        submission = self.store.find_by_id(SUBMISSIONS, sid)
        if submission is None:
            raise SubmissionNotFoundError(f'{sid} not found!')
        if submission.get('status') in FINAL_STATUSES and submission.get(
                'completedAt'):
            # a replay after the result was persisted
            logger().info(f'result already persisted [id={sid}]')
            if submission.get('errorMessage'):
                return
            fields = submission
        else:
            fields = self._evaluate(job)
        accepted = fields['status'] == Verdict.AC.value
        apply_side_effects(self.store, job, accepted, fields.get('score', 0))
        self._notify_result(job, fields)

    def _evaluate(self, job: Job) -> dict:
        sid = job.submissionId
        request = self.validator.validate(job.to_request())
        self.store.update_by_id(
            SUBMISSIONS, sid,
            {'$set': {
                'status': SubmissionStatus.RUNNING.value
            }})
        result = self.evaluator.evaluate(
            request,
            submission_id=sid,
            observer=lambda state: logger().debug(
                f'submission state [id={sid}, state={state}]'),
        )
        fields = {
            'status': result.verdict.value,
            'verdict': VERDICT_LABELS[result.verdict],
            'score': submission_score(result, job.points),
            'testCasesPassed': result.passed,
            'totalTestCases': result.total,
            'executionTime': result.runtime_ms,
            'memoryUsed': result.memory_kb,
            'testCaseResults': make_case_records(result, request),
            'compileOutput': result.compile_output or None,
            'completedAt': _now(),
        }
        if self.store.update_by_id(SUBMISSIONS, sid,
                                   {'$set': fields}) is None:
            raise SubmissionNotFoundError(f'{sid} vanished while judging')
        return fields

    def _mark_failed(self, job: Job, message: str):
        sid = job.submissionId
        failed = self.store.update_by_id(
            SUBMISSIONS, sid, {
                '$set': {
                    'status': Verdict.RE.value,
                    'verdict': VERDICT_LABELS[Verdict.RE],
                    'errorMessage': message,
                    'completedAt': _now(),
                }
            })
        if failed is None:
            return
        if job.userId:
            safe_publish(
                self.notifier, user_room(job.userId), {
                    'event': SUBMISSION_RESULT,
                    'submissionId': sid,
                    'status': Verdict.RE.value,
                    'error': FAILURE_MESSAGE,
                })

    def _notify_result(self, job: Job, fields: dict):
        if job.userId:
            safe_publish(
                self.notifier, user_room(job.userId), {
                    'event': SUBMISSION_RESULT,
                    'submissionId': job.submissionId,
                    'status': fields['status'],
                    'score': fields.get('score', 0),
                    'testCasesPassed': fields.get('testCasesPassed', 0),
                    'totalTestCases': fields.get('totalTestCases', 0),
                    'executionTime': fields.get('executionTime', 0),
                    'memoryUsed': fields.get('memoryUsed', 0),
                })
        if job.contestId:
            safe_publish(
                self.notifier, contest_room(job.contestId), {
                    'event': SUBMISSION_UPDATE,
                    'submissionId': job.submissionId,
                    'userId': job.userId,
                    'problemId': job.problemId,
                    'status': fields['status'],
                    'score': fields.get('score', 0),
                })
