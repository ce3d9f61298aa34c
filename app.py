import os
import logging
import queue
import secrets
from flask import Flask, request, jsonify
from werkzeug.exceptions import HTTPException
from pydantic import ValidationError as PydanticValidationError
from judge import config
from judge.config import SANDBOX_TOKEN
from judge.constant import SubmissionStatus
from judge.exception import InfrastructureError, ValidationError
from judge.languages import LanguageRegistry
from judge.orchestrator import TestOrchestrator
from judge.result_factory import (
    make_error_response,
    make_execution_response,
    make_validation_response,
)
from judge.validator import Validator
from pipeline.dispatcher import Dispatcher
from pipeline.effects import SUBMISSIONS
from pipeline.job import Job
from pipeline.notifier import make_notifier
from pipeline.store import BackendStore, MemoryStore

logging.basicConfig(
    filename=os.getenv("SANDBOX_LOG_FILE") or None,
    level=logging.DEBUG,
)
app = Flask(__name__)
if __name__ != "__main__":
    # let flask app use gunicorn's logger
    gunicorn_logger = logging.getLogger("gunicorn.error")
    app.logger.handlers = gunicorn_logger.handlers
    app.logger.setLevel(gunicorn_logger.level)
    logging.getLogger().setLevel(gunicorn_logger.level)

    # Allow overriding log level via environment variable
    if os.getenv("SANDBOX_DEBUG", "").lower() == "true":
        app.logger.setLevel(logging.DEBUG)
        logging.getLogger().setLevel(logging.DEBUG)
logger = app.logger

# setup judge
SANDBOX_CONFIG = os.getenv("SANDBOX_CONFIG", ".config/sandbox.json")
S_CONFIG = config.get_sandbox_config(SANDBOX_CONFIG)
REGISTRY = LanguageRegistry.from_config(S_CONFIG)
VALIDATOR = Validator.from_config(S_CONFIG, registry=REGISTRY)
ORCHESTRATOR = TestOrchestrator.from_config(S_CONFIG, registry=REGISTRY)

# setup dispatcher, documents live in the backend when one is configured
STORE = BackendStore() if os.getenv("BACKEND_API") else MemoryStore()
DISPATCHER = Dispatcher(
    STORE,
    notifier=make_notifier(),
    evaluator=ORCHESTRATOR,
    config_path=SANDBOX_CONFIG,
    validator=VALIDATOR,
)
DISPATCHER.start()


def _check_token():
    token = request.values.get("token", "")
    return secrets.compare_digest(token, SANDBOX_TOKEN)


@app.errorhandler(ValidationError)
def on_validation_error(e: ValidationError):
    return jsonify(make_validation_response(e.violations)), 400


@app.errorhandler(InfrastructureError)
def on_infrastructure_error(e: InfrastructureError):
    logger.error(f"infrastructure fault: {e}", exc_info=True)
    return jsonify(make_error_response(str(e) or "Internal sandbox error")), 500


@app.errorhandler(Exception)
def on_unexpected_error(e: Exception):
    if isinstance(e, HTTPException):
        return e
    logger.error(f"unexpected error: {e}", exc_info=True)
    return jsonify(make_error_response()), 500


@app.post("/run")
def run():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify(make_validation_response(["Invalid JSON body"])), 400
    execution_request = VALIDATOR.validate(payload)
    logger.debug(f"run request [lang={execution_request.language}, "
                 f"cases={len(execution_request.test_cases)}]")
    result = ORCHESTRATOR.evaluate(execution_request)
    return jsonify(make_execution_response(result, execution_request))


@app.get("/health")
def health():
    return jsonify({"status": "OK"}), 200


@app.get("/languages")
def languages():
    return jsonify({"languages": REGISTRY.supported()})


@app.post("/submit")
def submit():
    if not _check_token():
        logger.debug("get invalid token")
        return "invalid token", 403
    try:
        job = Job.model_validate(request.get_json(silent=True) or {})
    except PydanticValidationError as e:
        return jsonify(
            make_validation_response([
                f"{'.'.join(map(str, err['loc']))}: {err['msg']}"
                for err in e.errors()
            ])), 400
    # standalone mode has nobody else creating the submission document
    if isinstance(STORE, MemoryStore) and STORE.find_by_id(
            SUBMISSIONS, job.submissionId) is None:
        STORE.insert(
            SUBMISSIONS, {
                "_id": job.submissionId,
                "status": SubmissionStatus.PENDING.value,
                "contestId": job.contestId,
                "problemId": job.problemId,
                "userId": job.userId,
            })
    logger.debug(f"send submission {job.submissionId} to dispatcher")
    try:
        DISPATCHER.handle(job)
    except queue.Full:
        return (
            jsonify({
                "status": "err",
                "msg": "task queue is full now.\n"
                "please wait a moment and re-send the submission.",
                "data": None,
            }),
            500,
        )
    return jsonify({
        "status": "ok",
        "msg": "ok",
        "data": job.submissionId,
    })


@app.get("/submission/<submission_id>")
def submission(submission_id: str):
    if not _check_token():
        return "invalid token", 403
    doc = STORE.find_by_id(SUBMISSIONS, submission_id)
    if doc is None:
        return jsonify({"status": "err", "msg": "not found"}), 404
    return jsonify({"status": "ok", "data": doc})


@app.get("/status")
def status():
    queue_status = DISPATCHER.status()
    ret = {
        "load": queue_status["queued"] / max(DISPATCHER.MAX_TASK_COUNT, 1),
    }
    # if token is provided
    if secrets.compare_digest(SANDBOX_TOKEN, request.args.get("token", "")):
        ret.update({
            "queueSize": queue_status["queued"],
            "maxTaskCount": DISPATCHER.MAX_TASK_COUNT,
            "inFlight": queue_status["inFlight"],
            "workerCount": DISPATCHER.WORKER_COUNT,
            "running": DISPATCHER.do_run,
        })
    return jsonify(ret), 200


# for local debug
# if __name__ == "__main__":
#     app.run(host="0.0.0.0", port=5000, debug=True)
