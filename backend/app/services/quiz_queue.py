"""
Checkpoint LMS - Quiz Queue Engine
Adaptive question sequencing for a single lesson session.

A session ends only when every topic of the unit has been answered
correctly at least once. Each wrong answer appends a remedial question
from the same topic to the end of the queue, so the topic is revisited
after the student has seen the rest of the queue.
"""
import random
from dataclasses import dataclass, field
from typing import Any

from app.services.errors import AlreadyAnsweredError, ValidationError


@dataclass(frozen=True)
class QuestionCard:
    """A question as the engine sees it. Ids are strings."""
    question_id: str
    topic_id: str
    choice_ids: tuple[str, ...]
    correct_choice_ids: frozenset[str]


# topic_id -> interchangeable questions, in authoring order
TopicPools = dict[str, list[QuestionCard]]


@dataclass
class QueueItem:
    """One presentation of a question."""
    question_id: str
    topic_id: str
    choice_order: list[str]
    answered: bool = False
    remedial: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "question_id": self.question_id,
            "topic_id": self.topic_id,
            "choice_order": list(self.choice_order),
            "answered": self.answered,
            "remedial": self.remedial,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueueItem":
        return cls(
            question_id=data["question_id"],
            topic_id=data["topic_id"],
            choice_order=list(data["choice_order"]),
            answered=bool(data.get("answered", False)),
            remedial=bool(data.get("remedial", False)),
        )


@dataclass
class QuizQueue:
    """FIFO of questions plus the set of topics already cleared."""
    items: list[QueueItem]
    total_topics: int
    cleared_topic_ids: set[str] = field(default_factory=set)
    cursor: int = 0

    @property
    def is_exhausted(self) -> bool:
        return self.cursor >= len(self.items)

    @property
    def current_item(self) -> QueueItem | None:
        if self.is_exhausted:
            return None
        return self.items[self.cursor]

    @property
    def cleared_count(self) -> int:
        return len(self.cleared_topic_ids)

    @property
    def progress_rate(self) -> float:
        if self.total_topics <= 0:
            return 0.0
        return self.cleared_count / self.total_topics

    def to_state(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "total_topics": self.total_topics,
            "cleared_topic_ids": sorted(self.cleared_topic_ids),
            "cursor": self.cursor,
        }

    @classmethod
    def from_state(cls, state: dict[str, Any] | None) -> "QuizQueue":
        if not state:
            return cls(items=[], total_topics=0)
        return cls(
            items=[QueueItem.from_dict(item) for item in state.get("items", [])],
            total_topics=int(state.get("total_topics", 0)),
            cleared_topic_ids=set(state.get("cleared_topic_ids", [])),
            cursor=int(state.get("cursor", 0)),
        )


@dataclass
class AnswerOutcome:
    """Result of submitting one answer."""
    queue: QuizQueue
    item: QueueItem
    chosen_choice_id: str
    is_correct: bool
    appended: bool
    remedial_item: QueueItem | None = None

    @property
    def cleared_topic_ids(self) -> set[str]:
        return self.queue.cleared_topic_ids


def _make_item(card: QuestionCard, rng: random.Random, remedial: bool = False) -> QueueItem:
    choice_order = list(card.choice_ids)
    rng.shuffle(choice_order)
    return QueueItem(
        question_id=card.question_id,
        topic_id=card.topic_id,
        choice_order=choice_order,
        remedial=remedial,
    )


def build_queue(
    pools: TopicPools,
    per_topic: int = 1,
    rng: random.Random | None = None,
) -> QuizQueue:
    """
    Draw the opening questions of a session.

    Topics without questions cannot be cleared, so they are left out of
    both the queue and the topic total. When ``per_topic`` is above one,
    draws are distinct within a topic and laid out round-robin so the same
    topic does not appear twice in a row.

    Args:
        pools: Questions per topic
        per_topic: Opening draws per topic (at least 1)
        rng: Random source, injectable for deterministic tests

    Returns:
        A fresh queue with the cursor at 0
    """
    if per_topic < 1:
        raise ValidationError("At least one question per topic is required")
    rng = rng or random.Random()

    playable = {topic_id: cards for topic_id, cards in pools.items() if cards}
    draws = {
        topic_id: rng.sample(cards, min(per_topic, len(cards)))
        for topic_id, cards in playable.items()
    }

    items: list[QueueItem] = []
    for round_index in range(per_topic):
        for topic_id in playable:
            if round_index < len(draws[topic_id]):
                items.append(_make_item(draws[topic_id][round_index], rng))

    return QuizQueue(items=items, total_topics=len(playable))


def pick_remedial(
    queue: QuizQueue,
    topic_id: str,
    pools: TopicPools,
    rng: random.Random | None = None,
) -> QuestionCard | None:
    """
    Choose a follow-up question for a topic answered wrongly.

    Prefers questions not yet in the queue; once the pool is used up any
    question of the topic may repeat.
    """
    rng = rng or random.Random()
    pool = pools.get(topic_id) or []
    if not pool:
        return None

    seen = {item.question_id for item in queue.items if item.topic_id == topic_id}
    fresh = [card for card in pool if card.question_id not in seen]
    return rng.choice(fresh or pool)


def submit_answer(
    queue: QuizQueue,
    position: int,
    choice_id: str,
    pools: TopicPools,
    rng: random.Random | None = None,
) -> AnswerOutcome:
    """
    Grade the answer at ``position`` and update the queue in place.

    Correct: the topic joins the cleared set (no-op if already there).
    Incorrect: a remedial question of the same topic is appended.

    Raises:
        ValidationError: position is not the cursor, or the choice does not
            belong to the question
        AlreadyAnsweredError: the item was answered before
    """
    if position < 0 or position >= len(queue.items):
        raise ValidationError(f"No question at position {position}")
    if position != queue.cursor:
        raise ValidationError(
            f"Position {position} is not the current question ({queue.cursor})"
        )

    item = queue.items[position]
    if item.answered:
        raise AlreadyAnsweredError("This question has already been answered")
    if choice_id not in item.choice_order:
        raise ValidationError("Choice does not belong to this question")

    card = next(
        (c for c in pools.get(item.topic_id, []) if c.question_id == item.question_id),
        None,
    )
    if card is None:
        raise ValidationError("Question is no longer part of this unit")

    is_correct = choice_id in card.correct_choice_ids
    item.answered = True

    remedial_item = None
    if is_correct:
        queue.cleared_topic_ids.add(item.topic_id)
    else:
        remedial = pick_remedial(queue, item.topic_id, pools, rng)
        if remedial is not None:
            remedial_item = _make_item(remedial, rng or random.Random(), remedial=True)
            queue.items.append(remedial_item)

    return AnswerOutcome(
        queue=queue,
        item=item,
        chosen_choice_id=choice_id,
        is_correct=is_correct,
        appended=remedial_item is not None,
        remedial_item=remedial_item,
    )


def advance(queue: QuizQueue) -> bool:
    """
    Move past the current, already answered, question.

    Returns:
        True when the cursor has moved past the last question
    """
    item = queue.current_item
    if item is None:
        return True
    if not item.answered:
        raise ValidationError("Answer the current question before moving on")
    queue.cursor += 1
    return queue.is_exhausted
