from datetime import datetime, timezone
import random
import threading
import time

import pytest

from prep_app.constants.messages import TIME_UP_MESSAGE
from prep_app.core.models import ClearedMarkPolicy, QuestionStatus
from prep_app.core.services.attempt_engine import AttemptEngine, AttemptError, NoActiveAttemptError

from conftest import make_test

FIXED_NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


def build_engine(policy=ClearedMarkPolicy.REVERT_TO_MARKED):
    recorded = []
    clock = FakeClock()

    def record(attempt):
        attempt.id = f"attempt_{len(recorded) + 1}"
        recorded.append(attempt)
        return attempt

    engine = AttemptEngine(
        record_attempt=record,
        cleared_mark_policy=policy,
        clock=clock,
        now=lambda: FIXED_NOW,
        background_timer=False,
    )
    return engine, clock, recorded


def statuses(engine):
    return [entry.status for entry in engine.palette()]


def test_start_marks_first_question_not_answered():
    engine, _, _ = build_engine()
    engine.start(make_test(question_count=3))

    assert statuses(engine) == [
        QuestionStatus.NOT_ANSWERED,
        QuestionStatus.NOT_VISITED,
        QuestionStatus.NOT_VISITED,
    ]
    assert engine.remaining_seconds() == 600
    assert engine.palette()[0].is_current


def test_selection_is_committed_on_navigation_only():
    engine, _, _ = build_engine()
    engine.start(make_test(question_count=3))

    engine.select_option(1)
    assert statuses(engine)[0] == QuestionStatus.NOT_ANSWERED

    assert engine.next() == 1
    assert statuses(engine)[:2] == [QuestionStatus.ANSWERED, QuestionStatus.NOT_ANSWERED]

    engine.previous()
    assert engine.snapshot().selected_option == 1


def test_clearing_an_answer_reverts_to_not_answered():
    engine, _, _ = build_engine()
    engine.start(make_test(question_count=2))
    engine.select_option(2)
    engine.next()
    engine.previous()

    engine.clear_selection()
    engine.next()

    assert statuses(engine)[0] == QuestionStatus.NOT_ANSWERED


def test_mark_for_review_without_answer_moves_on():
    engine, _, _ = build_engine()
    engine.start(make_test(question_count=3))

    engine.mark_for_review()

    assert engine.snapshot().question_index == 1
    assert statuses(engine)[0] == QuestionStatus.MARKED


def test_mark_for_review_with_answer():
    engine, _, _ = build_engine()
    engine.start(make_test(question_count=3))

    engine.select_option(0)
    engine.mark_for_review()

    assert statuses(engine)[0] == QuestionStatus.MARKED_AND_ANSWERED


def test_answering_a_marked_question_keeps_the_mark():
    engine, _, _ = build_engine()
    engine.start(make_test(question_count=2))
    engine.mark_for_review()
    engine.previous()

    engine.select_option(1)
    engine.next()

    assert statuses(engine)[0] == QuestionStatus.MARKED_AND_ANSWERED


@pytest.mark.parametrize(
    "policy, expected",
    [
        (ClearedMarkPolicy.REVERT_TO_MARKED, QuestionStatus.MARKED),
        (ClearedMarkPolicy.KEEP_MARKED_AND_ANSWERED, QuestionStatus.MARKED_AND_ANSWERED),
    ],
)
def test_clearing_a_marked_answer_follows_policy(policy, expected):
    engine, _, _ = build_engine(policy)
    engine.start(make_test(question_count=2))
    engine.select_option(1)
    engine.mark_for_review()
    engine.previous()

    engine.clear_selection()
    engine.next()

    assert statuses(engine)[0] == expected


def test_navigation_out_of_bounds_stays_put():
    engine, _, _ = build_engine()
    engine.start(make_test(question_count=2))

    assert engine.previous() == 0
    assert engine.navigate(5) == 0
    engine.navigate(1)
    assert engine.next() == 1


def test_marking_the_last_question_stays_on_it():
    engine, _, _ = build_engine()
    engine.start(make_test(question_count=2))
    engine.navigate(1)

    engine.mark_for_review()

    assert engine.snapshot().question_index == 1
    assert statuses(engine)[1] == QuestionStatus.MARKED


def test_select_option_out_of_range():
    engine, _, _ = build_engine()
    engine.start(make_test())

    with pytest.raises(ValueError):
        engine.select_option(4)


def test_submit_scores_and_records_attempt():
    engine, clock, recorded = build_engine()
    engine.start(make_test(question_count=3))

    clock.advance(5)
    engine.select_option(1)
    engine.next()
    clock.advance(3)
    engine.select_option(0)
    engine.next()
    for _ in range(42):
        engine.tick()

    attempt = engine.submit()

    assert recorded == [attempt]
    assert attempt.id == "attempt_1"
    assert attempt.user_answers == [1, 0, None]
    assert (attempt.correct_answers, attempt.incorrect_answers, attempt.unanswered) == (1, 1, 1)
    # (2 - 0.66) / 6
    assert attempt.score == pytest.approx(22.333, rel=1e-3)
    assert attempt.time_per_question == [5.0, 3.0, 0.0]
    assert attempt.time_taken == 42
    assert attempt.completed_at == FIXED_NOW
    assert not engine.has_active_attempt()


def test_attempt_keeps_a_frozen_copy_of_the_test():
    engine, _, _ = build_engine()
    test = make_test(question_count=2)
    engine.start(test)
    test.questions[0].question_text = "edited later"

    attempt = engine.submit()

    assert attempt.full_test.questions[0].question_text == "Question 1"


def test_time_up_submits_automatically():
    engine, _, recorded = build_engine()
    engine.start(make_test(question_count=2, duration=1))
    engine.select_option(1)

    for _ in range(60):
        engine.tick()

    assert len(recorded) == 1
    assert recorded[0].user_answers == [1, None]
    assert recorded[0].time_taken == 60
    assert not engine.has_active_attempt()
    assert engine.drain_notices() == [TIME_UP_MESSAGE]
    assert engine.drain_notices() == []


def test_submit_without_attempt_raises():
    engine, _, _ = build_engine()

    with pytest.raises(NoActiveAttemptError):
        engine.submit()
    with pytest.raises(NoActiveAttemptError):
        engine.next()


def test_abandon_requires_confirmation():
    engine, _, recorded = build_engine()
    engine.start(make_test())

    assert engine.abandon(confirmed=False) is False
    assert engine.has_active_attempt()
    assert engine.abandon(confirmed=True) is True
    assert not engine.has_active_attempt()
    assert recorded == []


def test_cannot_start_empty_test():
    engine, _, _ = build_engine()

    with pytest.raises(AttemptError):
        engine.start(make_test(question_count=0))


def test_status_counts_in_snapshot():
    engine, _, _ = build_engine()
    engine.start(make_test(question_count=3))
    engine.select_option(1)
    engine.next()

    counts = engine.snapshot().status_counts

    assert counts[QuestionStatus.ANSWERED] == 1
    assert counts[QuestionStatus.NOT_ANSWERED] == 1
    assert counts[QuestionStatus.NOT_VISITED] == 1


def test_time_up_stops_the_countdown():
    engine, _, recorded = build_engine()
    engine.start(make_test(question_count=2, duration=1))
    for _ in range(60):
        engine.tick()

    assert engine.tick() is False
    assert engine.tick() is False
    assert len(recorded) == 1


def test_expired_countdown_does_not_submit_the_next_attempt():
    engine, _, recorded = build_engine()
    engine.start(make_test(test_id="old", duration=1))
    old_timer = engine._timer

    def run_out():
        for _ in range(60):
            old_timer.tick()

    with engine._lock:
        worker = threading.Thread(target=run_out)
        worker.start()
        while not old_timer.has_expired:
            time.sleep(0.001)
        engine.start(make_test(test_id="new", duration=30))
    worker.join(timeout=5)

    assert recorded == []
    assert engine.has_active_attempt()
    assert engine.snapshot().test_id == "new"
    assert engine.drain_notices() == []


@pytest.mark.parametrize("seed", range(20))
def test_random_actions_account_for_every_question(seed):
    rng = random.Random(seed)
    engine, clock, _ = build_engine(rng.choice(list(ClearedMarkPolicy)))
    test = make_test(question_count=5)
    engine.start(test)

    for _ in range(40):
        action = rng.choice(["select", "clear", "mark", "next", "previous", "jump"])
        clock.advance(rng.randint(0, 5))
        if action == "select":
            engine.select_option(rng.randrange(4))
        elif action == "clear":
            engine.clear_selection()
        elif action == "mark":
            engine.mark_for_review()
        elif action == "next":
            engine.next()
        elif action == "previous":
            engine.previous()
        else:
            engine.navigate(rng.randint(-1, 5))

    attempt = engine.submit()

    assert attempt.correct_answers + attempt.incorrect_answers + attempt.unanswered == 5
    assert attempt.unanswered == attempt.user_answers.count(None)
    assert sum(attempt.time_per_question) == pytest.approx(clock.value - 1000.0)
