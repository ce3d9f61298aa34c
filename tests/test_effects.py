import pytest

from judge.constant import Effect
from pipeline.effects import (
    PARTICIPANTS,
    PROBLEMS,
    SUBMISSIONS,
    USERS,
    apply_side_effects,
    award_contest_score,
    claim,
)


def _accept(store, job):
    store.update_by_id(SUBMISSIONS, job.submissionId,
                       {'$set': {
                           'status': 'AC',
                           'score': job.points
                       }})


def test_all_effects_applied(store, make_job):
    job = make_job('s1')
    _accept(store, job)
    applied = apply_side_effects(store, job, True, 100)
    assert applied == [
        Effect.CONTEST_SCORE, Effect.PROBLEM_STATS, Effect.USER_STATS
    ]
    participant = store.find_by_id(PARTICIPANTS, 'c1:u1')
    assert participant['score'] == 100
    assert participant['solvedProblems'] == ['p1']
    assert participant['submissions'] == ['s1']
    problem = store.find_by_id(PROBLEMS, 'p1')
    assert problem['stats']['totalSubmissions'] == 1
    assert problem['stats']['acceptedSubmissions'] == 1
    assert problem['stats']['successRate'] == 100
    user = store.find_by_id(USERS, 'u1')
    assert user['stats'] == {'totalSubmissions': 1, 'acceptedSubmissions': 1}


def test_replay_does_not_double_award(store, make_job):
    job = make_job('s1')
    _accept(store, job)
    apply_side_effects(store, job, True, 100)
    assert apply_side_effects(store, job, True, 100) == []
    assert store.find_by_id(PARTICIPANTS, 'c1:u1')['score'] == 100
    stats = store.find_by_id(PROBLEMS, 'p1')['stats']
    assert stats['totalSubmissions'] == 1


def test_second_accepted_submission_is_not_awarded(store, make_job):
    first = make_job('s1')
    _accept(store, first)
    apply_side_effects(store, first, True, 100)
    second = make_job('s2')
    _accept(store, second)
    apply_side_effects(store, second, True, 100)
    participant = store.find_by_id(PARTICIPANTS, 'c1:u1')
    assert participant['score'] == 100
    assert participant['submissions'] == ['s1', 's2']
    stats = store.find_by_id(PROBLEMS, 'p1')['stats']
    assert stats['totalSubmissions'] == 2
    assert stats['acceptedSubmissions'] == 2


def test_rejected_submission_updates_counters_only(store, make_job):
    job = make_job('s1')
    apply_side_effects(store, job, False, 40)
    participant = store.find_by_id(PARTICIPANTS, 'c1:u1')
    assert participant['score'] == 0
    assert participant['submissions'] == ['s1']
    stats = store.find_by_id(PROBLEMS, 'p1')['stats']
    assert stats['acceptedSubmissions'] == 0
    assert stats['successRate'] == 0


def test_success_rate_is_recomputed(store, make_job):
    apply_side_effects(store, make_job('s1'), False, 0)
    job = make_job('s2')
    _accept(store, job)
    apply_side_effects(store, job, True, 100)
    assert store.find_by_id(PROBLEMS, 'p1')['stats']['successRate'] == 50


def test_missing_participant_is_skipped(store, make_job):
    job = make_job('s1', userId='stranger')
    _accept(store, job)
    apply_side_effects(store, job, True, 100)
    assert store.find_by_id(PARTICIPANTS, 'c1:u1')['score'] == 0


def test_failed_effect_is_released_for_retry(store, make_job, monkeypatch):
    job = make_job('s1')
    _accept(store, job)

    def broken(*args, **kwargs):
        raise RuntimeError('store hiccup')

    monkeypatch.setattr('pipeline.effects.update_user_stats', broken)
    with pytest.raises(RuntimeError):
        apply_side_effects(store, job, True, 100)
    doc = store.find_by_id(SUBMISSIONS, 's1')
    assert Effect.USER_STATS.value not in doc['appliedEffects']
    monkeypatch.undo()
    # contest and problem effects are already done
    assert apply_side_effects(store, job, True, 100) == [Effect.USER_STATS]
    assert store.find_by_id(PARTICIPANTS, 'c1:u1')['score'] == 100


def test_claim_is_exclusive(store, make_job):
    make_job('s1')
    assert claim(store, 's1', Effect.USER_STATS)
    assert not claim(store, 's1', Effect.USER_STATS)


def test_concurrent_first_accepts_award_exactly_once(store, make_job):
    first, second = make_job('sa'), make_job('sb')
    for job in (first, second):
        _accept(store, job)
        assert claim(store, job.submissionId, Effect.CONTEST_SCORE)
    # both claims are taken before either award runs
    award_contest_score(store, first, True, 100)
    award_contest_score(store, second, True, 100)
    participant = store.find_by_id(PARTICIPANTS, 'c1:u1')
    assert participant['score'] == 100
    assert participant['solvedProblems'] == ['p1']
    assert participant['submissions'] == ['sa', 'sb']


def test_accept_after_missing_participant_is_awarded(store, make_job):
    early = make_job('s1', contestId='c2')
    _accept(store, early)
    apply_side_effects(store, early, True, 100)
    store.insert(
        PARTICIPANTS, {
            '_id': 'c2:u1',
            'contestId': 'c2',
            'userId': 'u1',
            'score': 0,
            'solvedProblems': [],
            'submissions': [],
        })
    later = make_job('s2', contestId='c2')
    _accept(store, later)
    apply_side_effects(store, later, True, 100)
    participant = store.find_by_id(PARTICIPANTS, 'c2:u1')
    assert participant['score'] == 100
    assert participant['solvedProblems'] == ['p1']
