'''
Side effects applied once a submission has a final result.

Every effect is claimed on the submission document before it is applied
(``appliedEffects``), so replaying the same job after a crash or a retry
never applies it twice.
'''
from judge.constant import Effect
from judge.utils import logger
from .job import Job
from .store import DocumentStore

SUBMISSIONS = 'submissions'
PROBLEMS = 'problems'
USERS = 'users'
PARTICIPANTS = 'participants'


def participant_id(contest_id, user_id) -> str:
    return f'{contest_id}:{user_id}'


def claim(store: DocumentStore, submission_id: str, effect: Effect) -> bool:
    '''Record ``effect`` on the submission; False if it was already there.'''
    claimed = store.update_by_id(
        SUBMISSIONS,
        submission_id,
        {'$addToSet': {
            'appliedEffects': effect.value
        }},
        guard={'appliedEffects': {
            '$ne': effect.value
        }},
    )
    return claimed is not None


def unclaim(store: DocumentStore, submission_id: str, effect: Effect):
    store.update_by_id(
        SUBMISSIONS,
        submission_id,
        {'$pull': {
            'appliedEffects': effect.value
        }},
    )


def _once(store: DocumentStore, submission_id: str, effect: Effect, apply):
    if not claim(store, submission_id, effect):
        logger().debug(
            f'skip applied effect [id={submission_id}, effect={effect.value}]')
        return False
    try:
        apply()
    except Exception:
        unclaim(store, submission_id, effect)
        raise
    return True


def award_contest_score(store: DocumentStore, job: Job, accepted: bool,
                        score: int):
    pid = participant_id(job.contestId, job.userId)
    if store.find_by_id(PARTICIPANTS, pid) is None:
        logger().info(f'participant not found [id={pid}]')
        return
    # always track the submission
    store.update_by_id(PARTICIPANTS, pid, {
        '$addToSet': {
            'submissions': job.submissionId
        },
    })
    if not accepted:
        return
    # solvedProblems guard awards each problem once
    awarded = store.update_by_id(
        PARTICIPANTS,
        pid,
        {
            '$inc': {
                'score': score
            },
            '$addToSet': {
                'solvedProblems': job.problemId
            },
        },
        guard={'solvedProblems': {
            '$ne': job.problemId
        }},
    )
    if awarded is not None:
        logger().info(f'award {score} point(s) [participant={pid}]')
    else:
        logger().info(f'problem already solved [participant={pid}, '
                      f'problem={job.problemId}]')


def update_problem_stats(store: DocumentStore, problem_id: str,
                         accepted: bool):
    problem = store.update_by_id(
        PROBLEMS, problem_id, {
            '$inc': {
                'stats.totalSubmissions': 1,
                'stats.acceptedSubmissions': int(accepted),
            },
        })
    if problem is None:
        logger().info(f'problem not found [id={problem_id}]')
        return
    stats = problem['stats']
    rate = 0.0
    if stats['totalSubmissions']:
        rate = round(
            stats['acceptedSubmissions'] * 100 / stats['totalSubmissions'], 2)
    store.update_by_id(PROBLEMS, problem_id,
                       {'$set': {
                           'stats.successRate': rate
                       }})


def update_user_stats(store: DocumentStore, user_id: str, accepted: bool):
    user = store.update_by_id(
        USERS, user_id, {
            '$inc': {
                'stats.totalSubmissions': 1,
                'stats.acceptedSubmissions': int(accepted),
            },
        })
    if user is None:
        logger().info(f'user not found [id={user_id}]')


def apply_side_effects(store: DocumentStore, job: Job, accepted: bool,
                       score: int) -> list:
    '''Apply every pending effect for ``job``; returns the ones applied now.'''
    applied = []
    sid = job.submissionId
    if job.contestId and job.userId and job.problemId:
        if _once(store, sid, Effect.CONTEST_SCORE,
                 lambda: award_contest_score(store, job, accepted, score)):
            applied.append(Effect.CONTEST_SCORE)
    if job.problemId:
        if _once(store, sid, Effect.PROBLEM_STATS,
                 lambda: update_problem_stats(store, job.problemId, accepted)):
            applied.append(Effect.PROBLEM_STATS)
    if job.userId:
        if _once(store, sid, Effect.USER_STATS,
                 lambda: update_user_stats(store, job.userId, accepted)):
            applied.append(Effect.USER_STATS)
    return applied
