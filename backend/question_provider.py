import asyncio
import html
import logging
import random
from typing import List, Optional

import requests

import config
from errors import UpstreamProviderFailure
from room_state import QuestionRecord

logger = logging.getLogger(__name__)

RESPONSE_OK = 0
RESPONSE_NO_RESULTS = 1


def _is_set(value) -> bool:
    return value not in (None, "", "any")


def build_params(amount: int, categories=None, difficulty: Optional[str] = None,
                 question_type: str = config.DEFAULT_QUESTION_TYPE) -> dict:
    params: dict = {"amount": amount}
    if isinstance(categories, (list, tuple)):
        ids = [str(c) for c in categories if _is_set(c)]
        if ids:
            params["category"] = ",".join(ids)
    elif _is_set(categories):
        params["category"] = str(categories)
    if _is_set(difficulty):
        params["difficulty"] = difficulty
    if _is_set(question_type):
        params["type"] = question_type
    return params


def format_question(raw: dict) -> QuestionRecord:
    correct = html.unescape(raw["correct_answer"])
    options = [html.unescape(a) for a in raw.get("incorrect_answers", [])] + [correct]
    if raw.get("type") == "multiple":
        random.shuffle(options)
    return QuestionRecord(
        question_text=html.unescape(raw["question"]),
        correct_answer=correct,
        options=options,
        type=raw.get("type", "multiple"),
        category=html.unescape(raw.get("category", "")),
        difficulty=raw.get("difficulty", ""),
    )


class QuestionProvider:
    """OpenTDB client. Blocking HTTP runs in a worker thread."""

    def __init__(self, api_url: str = config.TRIVIA_API_URL,
                 category_url: str = config.TRIVIA_CATEGORY_URL,
                 timeout: int = config.TRIVIA_API_TIMEOUT):
        self.api_url = api_url
        self.category_url = category_url
        self.timeout = timeout

    async def fetch(self, count: int, categories=None, difficulty: Optional[str] = None,
                    question_type: str = config.DEFAULT_QUESTION_TYPE) -> List[QuestionRecord]:
        params = build_params(count, categories, difficulty, question_type)
        data = await asyncio.to_thread(self._get_json, self.api_url, params)
        code = data.get("response_code")

        broad = build_params(count)
        if code == RESPONSE_NO_RESULTS and params != broad:
            logger.warning("No trivia results for %s, retrying with a broad query", params)
            data = await asyncio.to_thread(self._get_json, self.api_url, broad)
            code = data.get("response_code")

        if code == RESPONSE_NO_RESULTS:
            return []
        if code != RESPONSE_OK:
            logger.error("Trivia API returned response code %s", code)
            raise UpstreamProviderFailure()

        questions = [format_question(q) for q in data.get("results", [])]
        logger.info("Fetched %d trivia questions", len(questions))
        return questions

    async def fetch_categories(self) -> List[dict]:
        data = await asyncio.to_thread(self._get_json, self.category_url, None)
        categories = data.get("trivia_categories")
        if not categories:
            logger.warning("Trivia API returned no categories")
            return []
        return [{"id": c["id"], "name": html.unescape(c["name"])} for c in categories]

    def _get_json(self, url: str, params: Optional[dict]) -> dict:
        try:
            response = requests.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.Timeout:
            logger.warning("Trivia API timed out after %ds", self.timeout)
            raise UpstreamProviderFailure()
        except requests.RequestException as e:
            logger.error("HTTP error calling trivia API: %s", e)
            raise UpstreamProviderFailure()
        except ValueError as e:
            logger.error("Trivia API returned invalid JSON: %s", e)
            raise UpstreamProviderFailure()
