from typing import Iterable
import logging

from persistence import GameRecord, GameResult, InMemoryStore
from scoring import AnswerStats, CoinDelta, GamePlayed, SaveGame

logger = logging.getLogger(__name__)


class PersistenceDriver:
    """Executes best-effort writes requested by the game engine.

    Failures are logged and dropped; gameplay never waits on or breaks
    because of a stats write.
    """

    def __init__(self, store: InMemoryStore):
        self.store = store

    async def run(self, intents: Iterable) -> int:
        failures = 0
        for intent in intents:
            try:
                await self._execute(intent)
            except Exception:
                failures += 1
                logger.exception("Failed to persist %s", type(intent).__name__)
        return failures

    async def _execute(self, intent):
        if isinstance(intent, CoinDelta):
            await self.store.increment_user_coins(intent.username, intent.amount)
        elif isinstance(intent, AnswerStats):
            await self._record_answer(intent)
        elif isinstance(intent, GamePlayed):
            stats = await self.store.find_stats(intent.user_id)
            # Stats records are created on first answer, never here
            if stats is None:
                logger.debug("No stats for user %s, skipping games counter", intent.user_id)
                return
            stats.total_games += 1
            await self.store.save_stats(stats)
        elif isinstance(intent, SaveGame):
            await self.store.create_game(GameRecord(
                room_id=intent.room_id,
                questions=intent.questions,
                results=[GameResult(**r) for r in intent.results],
                start_time=intent.start_time,
                end_time=intent.end_time,
            ))
        else:
            raise TypeError(f"Unknown persistence intent: {intent!r}")

    async def _record_answer(self, intent: AnswerStats):
        stats = await self.store.find_stats(intent.user_id)
        if stats is None:
            stats = await self.store.create_stats(intent.user_id)
        stats.total_questions += 1
        if intent.correct:
            stats.total_wins += 1
            if stats.fastest_answer_time is None or intent.elapsed < stats.fastest_answer_time:
                stats.fastest_answer_time = intent.elapsed
        else:
            stats.total_losses += 1
        await self.store.save_stats(stats)
