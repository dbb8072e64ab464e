"""
Online feedback learning.

Explicit events (thumbs, quiz answers, pairwise comparisons) are decomposed
into per-feature (positive, negative) deltas using the same feature vocabulary
as profile building, then written as atomic increments to the feature
feedback store.

The user-facing path only enqueues events on a ``FeedbackWorker``; the worker
persists them in a thread with retries and keeps anything that still fails in
``dead_letters``.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping

from .database import (
    get_db,
    increment_feature_feedback,
    block_suggestion,
    log_pairwise_event,
    save_quiz_response,
    load_feature_feedback,
)
from .exploration import comfort_zone, penalize_blocked_exploration
from .features import FeatureRef, extract_features, find_feature, stable_feature_id, subgenre_refs
from .models import FeatureType, HistoryEntry, ItemDetails
from .subgenres import item_subgenres
from .utils import async_retry_with_backoff
from .config import (
    FEEDBACK_WEIGHT_DEFAULT,
    FEEDBACK_WEIGHT_TARGETED,
    FEEDBACK_WEIGHT_STRONG,
    FEEDBACK_TOP_GENRES,
    FEEDBACK_TOP_KEYWORDS,
    FEEDBACK_TOP_CAST,
    FEEDBACK_MAX_DIRECTORS,
    FEEDBACK_MAX_RETRIES,
    FEEDBACK_RETRY_DELAY,
    FEEDBACK_QUEUE_MAXSIZE,
)

logger = logging.getLogger(__name__)

FeatureUpdate = tuple[FeatureType, int, str, int, int]

REASON_LOVE_ALL = "love_all"
REASON_HATE_ALL = "hate_all"
NEUTRAL_REASONS = frozenset({"already_seen", "not_in_mood"})
TARGETED_REASON_TYPES = {
    "actor": FeatureType.ACTOR,
    "director": FeatureType.DIRECTOR,
    "genre": FeatureType.GENRE,
    "keyword": FeatureType.KEYWORD,
}

# Quiz answer -> (positive, negative)
_LIKERT_4 = {"love": (3, 0), "like": (2, 0), "neutral": (1, 1), "dislike": (0, 3)}
_PERSON_3 = {"fan": (3, 0), "neutral": (1, 1), "avoid": (0, 3)}

QUIZ_ANSWER_DELTAS: dict[str, dict] = {
    "genre_rating": {1: (0, 3), 2: (0, 2), 3: (1, 1), 4: (2, 0), 5: (3, 0)},
    "theme_preference": {"yes": (2, 0), "maybe": (1, 1), "no": (0, 2)},
    "subgenre_preference": _LIKERT_4,
    "era_preference": _LIKERT_4,
    "actor_preference": _PERSON_3,
    "director_preference": _PERSON_3,
}

QUIZ_FEATURE_TYPES = {
    "genre_rating": FeatureType.GENRE,
    "theme_preference": FeatureType.KEYWORD,
    "subgenre_preference": FeatureType.SUBGENRE,
    "era_preference": FeatureType.DECADE,
    "actor_preference": FeatureType.ACTOR,
    "director_preference": FeatureType.DIRECTOR,
}
MOVIE_RATING = "movie_rating"
UNKNOWN_ANSWER_DELTA = (1, 1)


def decompose(details: ItemDetails) -> list[FeatureRef]:
    """The features an item contributes to feedback: the profile vocabulary, capped."""
    refs = extract_features(
        details,
        max_genres=FEEDBACK_TOP_GENRES,
        max_keywords=FEEDBACK_TOP_KEYWORDS,
        max_cast=FEEDBACK_TOP_CAST,
        max_directors=FEEDBACK_MAX_DIRECTORS,
    )
    refs.extend(subgenre_refs(item_subgenres(details)))
    return refs


def _updates(refs: Iterable[FeatureRef], positive: int, negative: int) -> list[FeatureUpdate]:
    return [(r.feature_type, r.feature_id, r.name, positive, negative) for r in refs]


def combine_updates(updates: Iterable[FeatureUpdate]) -> list[FeatureUpdate]:
    """Sum deltas that target the same (feature_type, feature_id)."""
    totals: dict[tuple, list] = {}
    for feature_type, feature_id, name, pos, neg in updates:
        key = (FeatureType.parse(feature_type), int(feature_id))
        if key not in totals:
            totals[key] = [name, 0, 0]
        totals[key][1] += pos
        totals[key][2] += neg
    return [(ft, fid, name, pos, neg) for (ft, fid), (name, pos, neg) in totals.items()]


def thumbs_updates(details: ItemDetails, positive: bool, reason: str | None = None) -> list[FeatureUpdate]:
    """
    Deltas for a thumbs event.

    ``love_all`` / ``hate_all`` apply weight 3 to every extracted feature; a
    targeted ``<type>:<name>`` reason applies weight 2 to that one feature;
    no reason applies weight 1 to every feature; neutral reasons change nothing.
    """
    if reason in NEUTRAL_REASONS:
        return []

    if reason in (REASON_LOVE_ALL, REASON_HATE_ALL):
        weight = FEEDBACK_WEIGHT_STRONG
        refs = decompose(details)
    elif reason and ":" in reason:
        prefix, _, name = reason.partition(":")
        feature_type = TARGETED_REASON_TYPES.get(prefix.strip().lower())
        if feature_type is None:
            raise ValueError(f"Unknown feedback reason: {reason!r}")
        ref = find_feature(details, feature_type, name.strip())
        if ref is None:
            logger.warning(f"{prefix} '{name.strip()}' not found on item {details.item_id}, nothing to update")
            return []
        weight = FEEDBACK_WEIGHT_TARGETED
        refs = [ref]
    elif reason is None:
        weight = FEEDBACK_WEIGHT_DEFAULT
        refs = decompose(details)
    else:
        raise ValueError(f"Unknown feedback reason: {reason!r}")

    return _updates(refs, weight, 0) if positive else _updates(refs, 0, weight)


def quiz_delta(question_type: str, answer) -> tuple[int, int]:
    """Map a quiz answer to a (positive, negative) delta pair."""
    deltas = QUIZ_ANSWER_DELTAS.get(question_type)
    if deltas is None:
        raise ValueError(f"Unknown quiz question type: {question_type!r}")

    key = answer
    if question_type == "genre_rating":
        try:
            key = int(answer)
        except (TypeError, ValueError):
            key = None
    elif isinstance(answer, str):
        key = answer.strip().lower()

    if key not in deltas:
        logger.warning(f"Unknown answer {answer!r} for {question_type}, recording as neutral")
        return UNKNOWN_ANSWER_DELTA
    return deltas[key]


def history_seed_delta(entry: HistoryEntry) -> tuple[int, int]:
    """Initial (positive, negative) counts implied by one watched film."""
    rating = entry.rating
    if (rating is not None and rating >= 4.5) or (entry.liked and entry.rewatch):
        return 3, 0
    if (rating is not None and rating >= 3.5) or entry.liked:
        return 2, 0
    if rating is None:
        return 0, 0
    if rating >= 3.0:
        return 1, 0
    if rating <= 1.0:
        return 0, 3
    if rating <= 2.0:
        return 0, 2
    return 0, 0


def pairwise_updates(winner: ItemDetails, loser: ItemDetails) -> list[FeatureUpdate]:
    return combine_updates(_updates(decompose(winner), 1, 0) + _updates(decompose(loser), 0, 1))


# ---------------------------------------------------------------------------
# Store-writing operations
# ---------------------------------------------------------------------------

def apply_thumbs(
    user_id: str,
    details: ItemDetails,
    positive: bool,
    reason: str | None = None,
    top_genres: Iterable[str] | None = None,
    avoided_genres: Iterable[str] = (),
) -> int:
    """
    Persist a thumbs event as one transaction.

    A thumbs-down also blocks the item from future suggestions, and lowers the
    exploration rate when the item lay outside the user's top genres. Without
    ``top_genres`` the comfort zone comes from stored genre feedback; a user
    with none yet has no comfort zone and the rate is left alone.
    """
    updates = combine_updates(thumbs_updates(details, positive, reason))
    with get_db():
        if not positive and top_genres is None:
            top_genres, avoided_genres = comfort_zone(user_id)
        written = increment_feature_feedback(user_id, updates) if updates else 0
        if not positive:
            block_suggestion(user_id, details.item_id)
            top_genres = list(top_genres)
            rate = penalize_blocked_exploration(user_id, details, top_genres, avoided_genres) if top_genres else None
            if rate is not None:
                logger.info(f"{user_id} blocked exploratory item {details.item_id}, exploration rate now {rate:.2f}")
    logger.debug(f"Thumbs {'up' if positive else 'down'} from {user_id} on {details.item_id}: {written} features")
    return written


def apply_quiz_answer(
    user_id: str,
    question_type: str,
    answer,
    feature_id: int | None = None,
    name: str = "",
    details: ItemDetails | None = None,
) -> tuple[int, int]:
    """
    Persist a quiz answer and its feature update.

    ``movie_rating`` questions carry a thumbs answer and need ``details``.
    Subgenre questions may omit ``feature_id``; it is derived from the key.

    Returns:
        The (positive, negative) delta applied (for movie_rating, per feature)
    """
    if question_type == MOVIE_RATING:
        if details is None:
            raise ValueError("movie_rating answers need item details")
        positive = answer in (True, "up", "yes", "thumbs_up", 1, "1")
        with get_db():
            apply_thumbs(user_id, details, positive)
            save_quiz_response(user_id, question_type, details.item_id, answer)
        return (FEEDBACK_WEIGHT_DEFAULT, 0) if positive else (0, FEEDBACK_WEIGHT_DEFAULT)

    feature_type = QUIZ_FEATURE_TYPES.get(question_type)
    if feature_type is None:
        raise ValueError(f"Unknown quiz question type: {question_type!r}")
    if feature_id is None:
        if not name:
            raise ValueError(f"{question_type} answers need a feature id or a name")
        feature_id = stable_feature_id(name)

    positive, negative = quiz_delta(question_type, answer)
    with get_db():
        increment_feature_feedback(user_id, [(feature_type, feature_id, name, positive, negative)])
        save_quiz_response(user_id, question_type, feature_id, answer, {"name": name} if name else None)
    return positive, negative


def apply_pairwise(
    user_id: str,
    winner: ItemDetails,
    loser: ItemDetails,
    winner_consensus: str | None = None,
    loser_consensus: str | None = None,
    shared_reason_tags: list[str] | None = None,
) -> int:
    """Winner features +1 positive, loser features +1 negative, plus the raw log entry, committed together."""
    if winner.item_id == loser.item_id:
        raise ValueError("A pairwise comparison needs two different items")
    with get_db():
        written = increment_feature_feedback(user_id, pairwise_updates(winner, loser))
        log_pairwise_event(
            user_id, winner.item_id, loser.item_id, winner_consensus, loser_consensus, shared_reason_tags
        )
    return written


def seed_preferences_from_history(
    user_id: str,
    history: Iterable[HistoryEntry],
    details: Mapping[int, ItemDetails],
) -> int:
    """Bootstrap feature counters from watch history. Films without metadata are skipped."""
    updates: list[FeatureUpdate] = []
    for entry in history:
        item = details.get(entry.item_id)
        if item is None:
            continue
        positive, negative = history_seed_delta(entry)
        if positive or negative:
            updates.extend(_updates(decompose(item), positive, negative))
    combined = combine_updates(updates)
    written = increment_feature_feedback(user_id, combined) if combined else 0
    logger.info(f"Seeded {written} feature counters for {user_id}")
    return written


def feature_evidence_summary(user_id: str, top_n: int = 5) -> dict[str, dict[str, list[dict]]]:
    """Per feature type, the strongest preferred and avoided features with their counts."""
    by_type: dict[str, list] = defaultdict(list)
    for row in load_feature_feedback(user_id):
        by_type[row.feature_type.value].append(row)

    summary = {}
    for feature_type, rows in sorted(by_type.items()):
        def as_dict(r):
            return {
                'name': r.name or str(r.feature_id),
                'positive': r.positive_count,
                'negative': r.negative_count,
                'preference': round(r.inferred_preference, 3),
            }
        preferred = sorted((r for r in rows if r.inferred_preference > 0.5), key=lambda r: (-r.inferred_preference, -r.total))
        avoided = sorted((r for r in rows if r.inferred_preference < 0.5), key=lambda r: (r.inferred_preference, -r.total))
        summary[feature_type] = {
            'preferred': [as_dict(r) for r in preferred[:top_n]],
            'avoided': [as_dict(r) for r in avoided[:top_n]],
        }
    return summary


# ---------------------------------------------------------------------------
# Events and worker
# ---------------------------------------------------------------------------

@dataclass
class ThumbsEvent:
    user_id: str
    details: ItemDetails
    positive: bool
    reason: str | None = None
    top_genres: list[str] | None = None
    avoided_genres: list[str] = field(default_factory=list)

    def apply(self) -> None:
        apply_thumbs(self.user_id, self.details, self.positive, self.reason, self.top_genres, self.avoided_genres)


@dataclass
class QuizAnswerEvent:
    user_id: str
    question_type: str
    answer: object
    feature_id: int | None = None
    name: str = ""
    details: ItemDetails | None = None

    def apply(self) -> None:
        apply_quiz_answer(self.user_id, self.question_type, self.answer, self.feature_id, self.name, self.details)


@dataclass
class PairwiseEvent:
    user_id: str
    winner: ItemDetails
    loser: ItemDetails
    winner_consensus: str | None = None
    loser_consensus: str | None = None
    shared_reason_tags: list[str] = field(default_factory=list)

    def apply(self) -> None:
        apply_pairwise(
            self.user_id, self.winner, self.loser,
            self.winner_consensus, self.loser_consensus, self.shared_reason_tags,
        )


def process_event(event) -> None:
    """Default worker handler: every event knows how to persist itself."""
    event.apply()


class FeedbackWorker:
    """
    Queue consumer that persists feedback events off the request path.

    ``submit`` never blocks and never raises. Each event is handled in a thread
    with retry and backoff; events that still fail land in ``dead_letters``.
    """

    def __init__(
        self,
        handler: Callable[[object], None] = process_event,
        max_retries: int = FEEDBACK_MAX_RETRIES,
        retry_delay: float = FEEDBACK_RETRY_DELAY,
        maxsize: int = FEEDBACK_QUEUE_MAXSIZE,
    ):
        self.handler = handler
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.maxsize = maxsize
        self.queue: asyncio.Queue | None = None
        self.dead_letters: list[tuple[object, str]] = []
        self.processed = 0
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        if self.queue is None:
            self.queue = asyncio.Queue(maxsize=self.maxsize)
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Drain pending events, then stop the consumer."""
        if self.queue is not None and self.running:
            await self.queue.join()
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    def submit(self, event) -> bool:
        """Enqueue an event. Returns False (and dead-letters it) if the queue is full."""
        if self.queue is None:
            self.queue = asyncio.Queue(maxsize=self.maxsize)
        try:
            self.queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            logger.error(f"Feedback queue full ({self.maxsize}), dead-lettering {type(event).__name__}")
            self.dead_letters.append((event, "QueueFull"))
            return False

    async def _persist(self, event) -> None:
        @async_retry_with_backoff(max_retries=self.max_retries, initial_delay=self.retry_delay)
        async def persist_event():
            await asyncio.to_thread(self.handler, event)

        await persist_event()

    async def _run(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                await self._persist(event)
                self.processed += 1
            except Exception as exc:
                logger.error(f"Dropping {type(event).__name__} to dead letters after {self.max_retries} attempts: {exc}")
                self.dead_letters.append((event, f"{type(exc).__name__}: {exc}"))
            finally:
                self.queue.task_done()
