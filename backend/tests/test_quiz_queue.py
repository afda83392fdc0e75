"""
Checkpoint LMS - Quiz Queue Engine Tests
"""
import random

import pytest

from app.services import quiz_queue
from app.services.errors import AlreadyAnsweredError, ValidationError
from app.services.quiz_queue import QuestionCard, QuizQueue


def card(topic: str, n: int) -> QuestionCard:
    qid = f"{topic}-q{n}"
    return QuestionCard(
        question_id=qid,
        topic_id=topic,
        choice_ids=(f"{qid}-right", f"{qid}-wrong-1", f"{qid}-wrong-2"),
        correct_choice_ids=frozenset({f"{qid}-right"}),
    )


def pools_of(**sizes: int) -> dict[str, list[QuestionCard]]:
    return {topic: [card(topic, n) for n in range(size)] for topic, size in sizes.items()}


def right(queue: QuizQueue) -> str:
    return f"{queue.current_item.question_id}-right"


def wrong(queue: QuizQueue) -> str:
    return f"{queue.current_item.question_id}-wrong-1"


def test_build_queue_draws_one_question_per_topic():
    """Build queue draws one question per topic."""
    queue = quiz_queue.build_queue(pools_of(a=3, b=2, c=1), rng=random.Random(1))

    assert [item.topic_id for item in queue.items] == ["a", "b", "c"]
    assert queue.total_topics == 3
    assert queue.cursor == 0
    assert queue.cleared_count == 0


def test_build_queue_shuffles_choices_but_keeps_them_all():
    """Build queue shuffles choices but keeps them all."""
    pools = pools_of(a=1)
    queue = quiz_queue.build_queue(pools, rng=random.Random(7))

    assert sorted(queue.items[0].choice_order) == sorted(pools["a"][0].choice_ids)


def test_topics_without_questions_are_excluded():
    """Topics without questions are excluded."""
    queue = quiz_queue.build_queue(pools_of(a=1, empty=0, b=1), rng=random.Random(2))

    assert queue.total_topics == 2
    assert "empty" not in {item.topic_id for item in queue.items}


def test_build_queue_with_no_questions_is_already_exhausted():
    """Build queue with no questions is already exhausted."""
    queue = quiz_queue.build_queue({"empty": []})

    assert queue.total_topics == 0
    assert queue.is_exhausted
    assert queue.progress_rate == 0.0


def test_two_per_topic_are_distinct_and_interleaved():
    """Two per topic are distinct and interleaved."""
    queue = quiz_queue.build_queue(pools_of(a=3, b=3), per_topic=2, rng=random.Random(3))

    assert [item.topic_id for item in queue.items] == ["a", "b", "a", "b"]
    a_questions = [item.question_id for item in queue.items if item.topic_id == "a"]
    assert len(set(a_questions)) == 2


def test_per_topic_larger_than_pool_uses_whole_pool():
    """Per topic larger than pool uses whole pool."""
    queue = quiz_queue.build_queue(pools_of(a=1, b=2), per_topic=3, rng=random.Random(4))

    assert [item.topic_id for item in queue.items] == ["a", "b", "b"]


def test_per_topic_below_one_is_rejected():
    """Per topic below one is rejected."""
    with pytest.raises(ValidationError):
        quiz_queue.build_queue(pools_of(a=1), per_topic=0)


def test_all_correct_first_try_ends_after_one_submission_per_topic():
    """All correct first try ends after one submission per topic."""
    pools = pools_of(a=1, b=1)
    rng = random.Random(5)
    queue = quiz_queue.build_queue(pools, rng=rng)

    submissions = 0
    while not queue.is_exhausted:
        outcome = quiz_queue.submit_answer(queue, queue.cursor, right(queue), pools, rng)
        submissions += 1
        assert outcome.is_correct
        assert not outcome.appended
        quiz_queue.advance(queue)

    assert submissions == 2
    assert queue.cleared_count == 2
    assert queue.progress_rate == 1.0


def test_wrong_answer_appends_remedial_question_for_same_topic():
    """Wrong answer appends remedial question for same topic."""
    pools = pools_of(a=1, b=1)
    rng = random.Random(6)
    queue = quiz_queue.build_queue(pools, rng=rng)
    first_topic = queue.items[0].topic_id

    outcome = quiz_queue.submit_answer(queue, 0, wrong(queue), pools, rng)

    assert not outcome.is_correct
    assert outcome.appended
    assert len(queue.items) == 3
    assert queue.items[-1].topic_id == first_topic
    assert queue.items[-1].remedial
    assert queue.cleared_count == 0

    submissions = 1
    quiz_queue.advance(queue)
    while not queue.is_exhausted:
        quiz_queue.submit_answer(queue, queue.cursor, right(queue), pools, rng)
        submissions += 1
        quiz_queue.advance(queue)

    assert submissions == 3
    assert queue.cleared_count == 2


def test_remedial_prefers_questions_not_yet_in_queue():
    """Remedial prefers questions not yet in queue."""
    pools = pools_of(a=3)
    rng = random.Random(8)
    queue = quiz_queue.build_queue(pools, rng=rng)

    seen = {queue.items[0].question_id}
    for _ in range(2):
        quiz_queue.submit_answer(queue, queue.cursor, wrong(queue), pools, rng)
        quiz_queue.advance(queue)
        assert queue.current_item.question_id not in seen
        seen.add(queue.current_item.question_id)

    assert seen == {c.question_id for c in pools["a"]}


def test_remedial_repeats_when_pool_is_used_up():
    """Remedial repeats when pool is used up."""
    pools = pools_of(a=1)
    rng = random.Random(9)
    queue = quiz_queue.build_queue(pools, rng=rng)

    outcome = quiz_queue.submit_answer(queue, 0, wrong(queue), pools, rng)

    assert outcome.appended
    assert outcome.remedial_item.question_id == queue.items[0].question_id


def test_clearing_a_topic_twice_is_a_noop():
    """Clearing a topic twice is a no-op."""
    pools = pools_of(a=2)
    rng = random.Random(10)
    queue = quiz_queue.build_queue(pools, per_topic=2, rng=rng)

    quiz_queue.submit_answer(queue, 0, right(queue), pools, rng)
    quiz_queue.advance(queue)
    quiz_queue.submit_answer(queue, 1, right(queue), pools, rng)

    assert queue.cleared_topic_ids == {"a"}
    assert queue.progress_rate == 1.0


def test_answering_same_position_twice_is_rejected():
    """Answering same position twice is rejected."""
    pools = pools_of(a=1)
    queue = quiz_queue.build_queue(pools, rng=random.Random(11))
    choice = right(queue)

    quiz_queue.submit_answer(queue, 0, choice, pools)
    with pytest.raises(AlreadyAnsweredError):
        quiz_queue.submit_answer(queue, 0, choice, pools)


def test_answer_for_other_position_is_rejected():
    """Answer for other position is rejected."""
    pools = pools_of(a=1, b=1)
    queue = quiz_queue.build_queue(pools, rng=random.Random(12))

    with pytest.raises(ValidationError):
        quiz_queue.submit_answer(queue, 1, f"{queue.items[1].question_id}-right", pools)
    with pytest.raises(ValidationError):
        quiz_queue.submit_answer(queue, 5, "nope", pools)


def test_choice_from_another_question_is_rejected():
    """Choice from another question is rejected."""
    pools = pools_of(a=1, b=1)
    queue = quiz_queue.build_queue(pools, rng=random.Random(13))

    with pytest.raises(ValidationError):
        quiz_queue.submit_answer(queue, 0, f"{queue.items[1].question_id}-right", pools)


def test_advance_requires_an_answer():
    """Advance requires an answer."""
    queue = quiz_queue.build_queue(pools_of(a=1), rng=random.Random(14))

    with pytest.raises(ValidationError):
        quiz_queue.advance(queue)


@pytest.mark.parametrize("seed", range(20))
def test_session_terminates_when_wrong_answers_are_eventually_corrected(seed):
    """Session terminates when wrong answers are eventually corrected."""
    pools = pools_of(a=2, b=1, c=3)
    rng = random.Random(seed)
    queue = quiz_queue.build_queue(pools, rng=rng)
    mistakes_left = {"a": 3, "b": 2, "c": 1}

    for _ in range(100):
        if queue.is_exhausted:
            break
        topic = queue.current_item.topic_id
        if mistakes_left[topic]:
            mistakes_left[topic] -= 1
            quiz_queue.submit_answer(queue, queue.cursor, wrong(queue), pools, rng)
        else:
            quiz_queue.submit_answer(queue, queue.cursor, right(queue), pools, rng)
        quiz_queue.advance(queue)

    assert queue.is_exhausted
    assert queue.cleared_count == 3


def test_state_survives_serialization():
    """State survives serialization."""
    pools = pools_of(a=1, b=2)
    rng = random.Random(15)
    queue = quiz_queue.build_queue(pools, rng=rng)
    quiz_queue.submit_answer(queue, 0, wrong(queue), pools, rng)

    restored = QuizQueue.from_state(queue.to_state())

    assert restored == queue
