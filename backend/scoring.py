"""Pure scoring rules and the persistence intents they produce.

Nothing here touches storage or sockets: the game engine hands the
returned intents to ``PersistenceDriver``.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import config


@dataclass
class CoinDelta:
    username: str
    amount: int


@dataclass
class AnswerStats:
    user_id: str
    correct: bool
    elapsed: float


@dataclass
class GamePlayed:
    user_id: str


@dataclass
class SaveGame:
    room_id: str
    questions: List[dict]
    results: List[dict]
    start_time: float
    end_time: float


@dataclass
class AnswerOutcome:
    correct: bool
    points: int = 0
    is_fastest: bool = False


@dataclass
class Settlement:
    results: List[dict]
    coins_earned: Dict[str, int]
    intents: list = field(default_factory=list)


def answers_match(submitted, correct) -> bool:
    return str(submitted).strip().lower() == str(correct).strip().lower()


def score_answer(submitted, correct_answer, first_correct_taken: bool) -> AnswerOutcome:
    """Base points for a correct answer, plus the fastest bonus if nobody beat us to it."""
    if not answers_match(submitted, correct_answer):
        return AnswerOutcome(correct=False)
    points = config.POINTS_FOR_CORRECT_ANSWER
    if not first_correct_taken:
        points += int(config.POINTS_FOR_CORRECT_ANSWER * config.BONUS_FOR_FASTEST_ANSWER_PERCENT)
        return AnswerOutcome(correct=True, points=points, is_fastest=True)
    return AnswerOutcome(correct=True, points=points)


def winning_usernames(scores: Dict[str, int]) -> set:
    """Everyone tied on the top score wins, unless the top score is zero."""
    if not scores:
        return set()
    top = max(scores.values())
    if top <= 0:
        return set()
    return {name for name, score in scores.items() if score == top}


def coin_award(score: int, is_winner: bool) -> int:
    if is_winner:
        return config.WINNER_BASE_COINS + score // 20
    return score // 10 + config.LOSER_BASE_COINS


def settle_game(room_id: str, players: list, questions: list,
                start_time: float, end_time: float) -> Settlement:
    """Final results, coin awards and the writes that record them.

    ``players`` are PlayerState objects in join order, ``questions`` are
    QuestionRecords.
    """
    scores = {p.username: p.score for p in players}
    winners = winning_usernames(scores)

    results = []
    coins_earned: Dict[str, int] = {}
    for player in players:
        is_winner = player.username in winners
        results.append({"username": player.username, "score": player.score, "is_winner": is_winner})
        coins_earned[player.username] = coin_award(player.score, is_winner)

    intents: list = [CoinDelta(username, amount) for username, amount in coins_earned.items()]
    intents.extend(GamePlayed(p.user_id) for p in players if p.user_id)
    intents.append(SaveGame(
        room_id=room_id,
        questions=[q.snapshot() for q in questions],
        results=results,
        start_time=start_time,
        end_time=end_time,
    ))
    return Settlement(results=results, coins_earned=coins_earned, intents=intents)


def answer_stats_intent(user_id: Optional[str], correct: bool, elapsed: float) -> list:
    if not user_id:
        return []
    return [AnswerStats(user_id=user_id, correct=correct, elapsed=round(elapsed, 3))]
