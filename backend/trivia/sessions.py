from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Coroutine, Dict, List, Optional, Set

from .adaptive import AdaptiveSelector
from .errors import (
    InvalidWager,
    PoolExhausted,
    QuestionNotInSession,
    SessionExpired,
    SessionNotFound,
    WagerNotAllowed,
    WagerTooLarge,
)
from .models import (
    ANONYMOUS_USER,
    AdaptiveState,
    Answer,
    CollectionMeta,
    FastestAnswer,
    Question,
    Session,
    SessionResults,
    UserId,
    WagerResult,
)
from .plausibility import CLEAN, PATTERN_THRESHOLD, PlausibilityVerdict, evaluate_answer, penalty_active
from .profiles import DEFAULT_TIMER_MULTIPLIER, ProfileStore
from .scoring import (
    DEFAULT_PENALTY,
    PenaltyPolicy,
    calculate_response_time,
    calculate_score,
    calculate_wager_score,
    max_wager,
)
from .storage import SessionStorage
from .telemetry import QuestionTelemetry
from .utils import utcnow

logger = logging.getLogger(__name__)


def _key(session_id: str) -> str:
    return f"session:{session_id}"


class SessionManager:
    """Server-authoritative game sessions: creation, answers, scoring and results.

    Every read-modify-write on one session id runs under that session's lock,
    and always re-reads the record from storage rather than caching it.
    """

    def __init__(
        self,
        storage: SessionStorage,
        *,
        profiles: Optional[ProfileStore] = None,
        telemetry: Optional[QuestionTelemetry] = None,
        selector: Optional[AdaptiveSelector] = None,
        ttl_seconds: int = 3600,
        round_length: int = 10,
        question_duration: float = 25,
        final_question_duration: float = 50,
        penalty: PenaltyPolicy = DEFAULT_PENALTY,
    ):
        self.storage = storage
        self.profiles = profiles
        self.telemetry = telemetry
        self.selector = selector or AdaptiveSelector()
        self.ttl_seconds = ttl_seconds
        self.round_length = round_length
        self.question_duration = question_duration
        self.final_question_duration = final_question_duration
        self.penalty = penalty
        self.locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._background: Set[asyncio.Task] = set()

    @property
    def degraded(self) -> bool:
        return self.storage.degraded

    @asynccontextmanager
    async def _lock(self, session_id: str) -> AsyncIterator[None]:
        # An entry lives only while some caller holds or waits on it
        lock = self.locks.setdefault(session_id, asyncio.Lock())
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if not self._lock_users[session_id]:
                del self._lock_users[session_id]
                del self.locks[session_id]

    async def _fetch(self, session_id: str) -> Optional[Session]:
        raw = await self.storage.get(_key(session_id))
        return Session.model_validate_json(raw) if raw else None

    async def save_session(self, s: Session):
        await self.storage.set(_key(s.session_id), s.model_dump_json(), self.ttl_seconds)

    def recent_question_ids(self, user_id: UserId) -> List[str]:
        if user_id == ANONYMOUS_USER:
            return []
        return self.selector.recent.get(user_id)

    async def create_session(
        self,
        user_id: UserId,
        questions: List[Question],
        collection: Optional[CollectionMeta] = None,
    ) -> str:
        s = Session(
            session_id=str(uuid.uuid4()),
            user_id=user_id,
            questions=questions,
            round_length=min(self.round_length, len(questions)) or self.round_length,
            collection=collection,
        )
        await self.save_session(s)
        if s.is_authenticated:
            self.selector.recent.add(user_id, [q.id for q in questions])
        return s.session_id

    async def create_adaptive_session(
        self,
        user_id: UserId,
        first_question: Question,
        candidate_pools: Dict[str, List[Question]],
        collection: Optional[CollectionMeta] = None,
    ) -> str:
        available = 1 + sum(len(pool) for pool in candidate_pools.values())
        s = Session(
            session_id=str(uuid.uuid4()),
            user_id=user_id,
            mode="adaptive",
            questions=[first_question],
            round_length=min(self.round_length, available),
            collection=collection,
            adaptive_state=AdaptiveState(
                candidate_pools=candidate_pools,
                used_question_ids=[first_question.id],
            ),
        )
        await self.save_session(s)
        if s.is_authenticated:
            self.selector.recent.add(user_id, [first_question.id])
        return s.session_id

    async def get_session(self, session_id: str) -> Optional[Session]:
        async with self._lock(session_id):
            return await self._touch(session_id)

    async def _touch(self, session_id: str) -> Optional[Session]:
        # Reads slide the expiry window forward
        s = await self._fetch(session_id)
        if s is None:
            return None
        s.last_activity_time = utcnow()
        await self.save_session(s)
        return s

    async def submit_answer(
        self,
        session_id: str,
        question_id: str,
        selected_option: Optional[int],
        time_remaining: float,
        wager: Optional[int] = None,
    ) -> Answer:
        async with self._lock(session_id):
            s = await self._touch(session_id)
            if s is None:
                raise SessionNotFound(session_id)

            located = s.locate(question_id)
            if located is None:
                raise QuestionNotInSession(question_id)
            index, question = located

            existing = s.answer_for(question_id)
            if existing is not None:
                return existing

            if s.completed:
                raise SessionExpired(session_id)

            is_final = index == s.final_index
            self._validate_wager(s, is_final, wager)

            duration = self.final_question_duration if is_final else self.question_duration
            response_time = calculate_response_time(duration, time_remaining)
            is_correct = selected_option is not None and selected_option == question.correct_answer

            verdict = CLEAN
            if not is_final and s.is_authenticated:
                verdict = evaluate_answer(
                    is_correct=is_correct,
                    response_time=response_time,
                    time_remaining=time_remaining,
                    difficulty=question.difficulty,
                    max_time_remaining=duration,
                    timer_multiplier=await self._timer_multiplier(s.user_id),
                )
                self._record_flags(s, question, verdict, response_time, time_remaining)

            flagged = verdict.flagged(is_correct)
            if is_final:
                score = calculate_wager_score(is_correct, wager)
            else:
                score = calculate_score(
                    is_correct,
                    time_remaining,
                    flagged=flagged,
                    penalty_active=penalty_active(s.plausibility_flags),
                    penalty=self.penalty,
                )

            answer = Answer(
                question_id=question_id,
                selected_option=selected_option,
                time_remaining=time_remaining,
                is_correct=is_correct,
                base_points=score.base_points,
                speed_bonus=score.speed_bonus,
                total_points=score.total_points,
                response_time=response_time,
                flagged=flagged,
                wager=wager,
            )
            s.answers.append(answer)

            if s.adaptive_state is not None:
                self._advance_adaptive(s, s.adaptive_state, index, is_correct)

            await self.save_session(s)

        if self.telemetry is not None:
            self._spawn(self.telemetry.record(question_id, is_correct))
        return answer

    def _validate_wager(self, s: Session, is_final: bool, wager: Optional[int]) -> None:
        if wager is None:
            return
        if not is_final:
            raise WagerNotAllowed()
        if wager < 0:
            raise InvalidWager(wager)
        limit = max_wager(s.total_score)
        if wager > limit:
            raise WagerTooLarge(wager, limit)

    async def _timer_multiplier(self, user_id: UserId) -> float:
        if self.profiles is None:
            return DEFAULT_TIMER_MULTIPLIER
        return await self.profiles.get_timer_multiplier(user_id)

    def _record_flags(
        self, s: Session, question: Question, verdict: PlausibilityVerdict, response_time: float, time_remaining: float
    ) -> None:
        if verdict.too_fast:
            logger.warning(
                "Suspicious answer: responseTime %.2fs below threshold (session=%s question=%s difficulty=%s)",
                response_time,
                s.session_id,
                question.id,
                question.difficulty,
            )
        if verdict.clock_skew:
            logger.warning(
                "Suspicious answer: timeRemaining %.2fs exceeds question duration (session=%s question=%s)",
                time_remaining,
                s.session_id,
                question.id,
            )
        if not verdict.flag_count:
            return

        was_active = penalty_active(s.plausibility_flags)
        s.plausibility_flags += verdict.flag_count
        if not was_active and penalty_active(s.plausibility_flags):
            logger.warning(
                "Penalty active for session %s after %d plausibility flags (threshold %d)",
                s.session_id,
                s.plausibility_flags,
                PATTERN_THRESHOLD,
            )

    def _advance_adaptive(self, s: Session, state: AdaptiveState, index: int, is_correct: bool) -> None:
        if is_correct:
            state.correct_count += 1

        # Only the newest question pulls in a successor
        if index != len(s.questions) - 1 or len(s.questions) >= s.round_length:
            return

        question_number = len(s.questions) + 1
        user_id = s.user_id if s.is_authenticated else None
        try:
            nxt = self.selector.draw(state, question_number, s.round_length, user_id=user_id)
        except PoolExhausted as exc:
            logger.warning("Adaptive pool exhausted for session %s: %s; ending round at %d", s.session_id, exc, len(s.questions))
            s.round_length = len(s.questions)
            return
        s.questions.append(nxt)

    async def get_results(self, session_id: str) -> SessionResults:
        async with self._lock(session_id):
            s = await self._touch(session_id)
            if s is None:
                raise SessionNotFound(session_id)
            if not s.completed:
                s.completed = True
                await self.save_session(s)
        return self.aggregate(s)

    @staticmethod
    def aggregate(s: Session) -> SessionResults:
        total_score = total_base = total_bonus = total_correct = 0
        fastest: Optional[FastestAnswer] = None

        for i, a in enumerate(s.answers):
            total_score += a.total_points
            total_base += a.base_points
            total_bonus += a.speed_bonus
            if not a.is_correct:
                continue
            total_correct += 1
            # strict comparison keeps the first of equally fast answers
            if fastest is None or a.response_time < fastest.response_time:
                fastest = FastestAnswer(question_index=i, response_time=a.response_time, points=a.total_points)

        wager_result = None
        if len(s.answers) >= s.round_length:
            final = s.answers[s.final_index]
            if final.wager is not None:
                wager_result = WagerResult(
                    wager_amount=final.wager,
                    won=final.total_points > 0,
                    points_change=final.total_points,
                )

        return SessionResults(
            answers=list(s.answers),
            total_score=total_score,
            total_base_points=total_base,
            total_speed_bonus=total_bonus,
            total_correct=total_correct,
            total_questions=len(s.questions),
            fastest_answer=fastest,
            wager_result=wager_result,
        )

    async def award_progression(self, session_id: str, results: SessionResults) -> Optional[Dict[str, int]]:
        """Credit XP and gems once per session. Returns None when nothing was awarded."""
        if self.profiles is None:
            return None

        async with self._lock(session_id):
            s = await self._fetch(session_id)
            if s is None or not s.is_authenticated or s.progression_awarded:
                return None
            s.progression_awarded = True
            await self.save_session(s)

        try:
            return await self.profiles.award_progression(
                s.user_id, results.total_score, results.total_correct, results.total_questions
            )
        except Exception:
            logger.exception("Progression award failed for session %s", session_id)
            return None

    def _spawn(self, coro: Coroutine) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def flush(self) -> None:
        """Wait for outstanding fire-and-forget work (telemetry)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        await self.flush()
