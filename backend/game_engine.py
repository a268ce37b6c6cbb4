from typing import Callable, Optional
import asyncio
import logging
import time

import config
from errors import (
    AlreadyAnswered, GameInProgress, InvalidState, NoActiveQuestion,
    Unauthorized, UpstreamProviderFailure,
)
from persistence_driver import PersistenceDriver
from question_provider import QuestionProvider
from room_state import FINISHED, PLAYING, WAITING, RoomRegistry, RoomState
from scoring import AnswerOutcome, answer_stats_intent, score_answer, settle_game

logger = logging.getLogger(__name__)


class GameEngine:
    """Runs the question loop for each room.

    Timer callbacks only ever carry the room id and the game generation;
    they look the room up again when they fire, so a room torn down or
    restarted in the meantime is left alone.
    """

    def __init__(self, registry: RoomRegistry, hub, provider: QuestionProvider,
                 driver: PersistenceDriver,
                 sleep: Callable = asyncio.sleep,
                 clock: Callable[[], float] = time.time,
                 start_delay: float = config.GAME_START_DELAY_SECONDS):
        self.registry = registry
        self.hub = hub
        self.provider = provider
        self.driver = driver
        self.sleep = sleep
        self.clock = clock
        self.start_delay = start_delay

    def _live_room(self, room_id: str, generation: int) -> Optional[RoomState]:
        room = self.registry.get(room_id)
        if room is None or room.status != PLAYING or room.game_generation != generation:
            return None
        return room

    async def start(self, room_id: str, connection_id: str):
        room = self.registry.get(room_id)
        if room is None or connection_id not in room.players or connection_id != room.current_host_socket_id:
            logger.warning("Unauthorized attempt to start game in room %s by %s", room_id, connection_id)
            raise Unauthorized("You are not authorized to start the game or room does not exist.")
        if room.status == PLAYING:
            raise GameInProgress("Game is already in progress.")
        if len(room.players) < config.MIN_PLAYERS_TO_START:
            raise InvalidState(f"Need at least {config.MIN_PLAYERS_TO_START} players to start a game.")

        room.cancel_timer()
        room.status = PLAYING
        room.current_question_index = 0
        room.questions = []
        room.question_open = False
        room.reset_scores()
        room.game_generation += 1
        generation = room.game_generation
        settings = dict(room.settings)
        logger.info("Starting game in room %s with %d players", room_id, len(room.players))

        try:
            questions = await self.provider.fetch(
                settings["question_count"],
                settings.get("categories"),
                settings.get("difficulty"),
            )
        except UpstreamProviderFailure:
            questions = []
        except Exception:
            logger.exception("Unexpected error fetching questions for room %s", room_id)
            questions = []

        # A room torn down and recreated under the same id restarts its generation count
        if self._live_room(room_id, generation) is not room:
            logger.info("Room %s changed while fetching questions, dropping start", room_id)
            return

        if not questions:
            logger.error("No questions for room %s, back to waiting", room_id)
            room.status = WAITING
            await self.hub.emit_to_room(room_id, "game_error", {
                "message": UpstreamProviderFailure.default_message,
            })
            return

        room.questions = questions
        room.question_timer = asyncio.create_task(self._begin_after_countdown(room_id, generation))
        await self.hub.emit_to_room(room_id, "game_starting", {
            "room_id": room_id,
            "settings": room.settings,
            "players": room.participants(),
            "total_questions": len(questions),
        })

    async def _begin_after_countdown(self, room_id: str, generation: int):
        try:
            await self.sleep(self.start_delay)
        except asyncio.CancelledError:
            return
        if self._live_room(room_id, generation) is None:
            return
        await self.advance_question(room_id)

    async def advance_question(self, room_id: str):
        room = self.registry.get(room_id)
        if room is None or room.status != PLAYING:
            return

        room.cancel_timer()
        now = self.clock()
        for player in room.players.values():
            player.answered = False
            player.question_start_time = now

        question = room.current_question()
        if question is None:
            await self._finish_game(room)
            return

        index = room.current_question_index
        question.first_correct_answer_socket_id = None
        room.question_start_time = now
        if index == 0:
            room.game_started_at = now
        room.question_open = True
        seconds = room.settings["time_per_question"]
        room.question_timer = asyncio.create_task(
            self._question_timeout(room_id, room.game_generation, index, seconds)
        )
        await self.hub.emit_to_room(room_id, "send_question", {
            "question_index": index,
            "total_questions": len(room.questions),
            "question_text": question.question_text,
            "options": question.options,
            "question_type": question.type,
            "time_limit": seconds,
            "question_start_time": now,
        })

    async def _question_timeout(self, room_id: str, generation: int, index: int, seconds: float):
        try:
            await self.sleep(seconds)
        except asyncio.CancelledError:
            return

        room = self._live_room(room_id, generation)
        if room is None or room.current_question_index != index:
            return
        room.question_open = False
        await self.hub.emit_to_room(room_id, "time_up", {
            "question_index": index,
            "correct_answer": room.questions[index].correct_answer,
        })

        room = self._live_room(room_id, generation)
        if room is None or room.current_question_index != index:
            return
        room.current_question_index += 1
        await self.advance_question(room_id)

    async def _finish_game(self, room: RoomState):
        room.status = FINISHED
        room.question_open = False
        settlement = settle_game(
            room.room_id,
            list(room.players.values()),
            room.questions,
            start_time=room.game_started_at or room.question_start_time,
            end_time=self.clock(),
        )
        winners = [r["username"] for r in settlement.results if r["is_winner"]]
        logger.info("Game over in room %s, winners: %s", room.room_id, winners or "none")

        room_id = room.room_id
        room.reset_for_new_game()
        await self.hub.emit_to_room(room_id, "game_end", {
            "room_id": room_id,
            "results": settlement.results,
            "coins_earned": settlement.coins_earned,
        })
        await self.driver.run(settlement.intents)

    async def submit_answer(self, room_id: str, connection_id: str, answer,
                            user_id: Optional[str] = None) -> AnswerOutcome:
        room = self.registry.get(room_id)
        player = room.players.get(connection_id) if room else None
        if room is None or room.status != PLAYING or player is None:
            raise InvalidState()
        if player.answered:
            raise AlreadyAnswered()
        question = room.current_question()
        if question is None or not room.question_open:
            raise NoActiveQuestion()

        player.answered = True
        outcome = score_answer(answer, question.correct_answer,
                               question.first_correct_answer_socket_id is not None)
        if outcome.is_fastest:
            question.first_correct_answer_socket_id = connection_id
        player.score += outcome.points
        player.coins += outcome.points
        elapsed = self.clock() - (player.question_start_time or room.question_start_time)
        intents = answer_stats_intent(user_id or player.user_id, outcome.correct, elapsed)

        await self.hub.emit(connection_id, "answer_feedback", {
            "success": outcome.correct,
            "message": "Correct answer!" if outcome.correct else "Incorrect answer.",
            "correct_answer": question.correct_answer,
        })
        await self.hub.emit_to_room(room_id, "score_update", {
            "username": player.username,
            "score": player.score,
            "points_earned": outcome.points,
            "is_correct": outcome.correct,
            "is_fastest": outcome.is_fastest,
            "coins": player.coins,
        })
        await self.driver.run(intents)
        return outcome
