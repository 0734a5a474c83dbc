"""
Answer Generation Module

Wraps a completion provider with request spacing, retries, context-length
recovery and tolerant parsing of structured (JSON) output.
"""

from typing import Any, Callable, Dict, List, Optional, Protocol
import asyncio
import json
import math
import re
import time

import structlog
import tiktoken
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import GenerationConfig
from .exceptions import ContextTooLong, MalformedGeneratedOutput, ProviderTimeout, RateLimited
from . import prompts

logger = structlog.get_logger(__name__)

Message = Dict[str, str]

INSUFFICIENT_INFO_ANSWER = (
    "Sorry, I could not find enough information to answer your question. "
    "Please try rephrasing it or choose the lesson it is about."
)
APOLOGY_ANSWER = "Sorry, something went wrong while answering your question. Please try again."

# Share of the prompt token budget kept after a context-length error
TRUNCATION_RATIO = 0.8

CODE_FENCE = re.compile(r'^\s*```(?:json)?\s*|\s*```\s*$', re.IGNORECASE)

_encoder = None


class CompletionProvider(Protocol):
    async def complete(self, messages: List[Message], *, temperature: float,
                       max_tokens: int) -> str:
        """Raises RateLimited, ProviderTimeout, ContextTooLong or ProviderUnavailable."""
        ...


def count_tokens(text: str) -> int:
    """Token count under cl100k_base, or a length estimate when the encoding cannot be loaded"""
    global _encoder
    if _encoder is None:
        try:
            _encoder = tiktoken.get_encoding("cl100k_base")
        except Exception as e:
            logger.warning("Token encoder unavailable, estimating from length", error=str(e))
            _encoder = False
    if _encoder is False:
        return math.ceil(len(text) / 2.5)
    return len(_encoder.encode(text))


def truncate_messages(messages: List[Message], max_tokens: int,
                      token_counter: Callable[[str], int] = count_tokens) -> List[Message]:
    """
    Drop the oldest turns until the conversation fits in ``max_tokens``

    A leading system message is always kept. If not even the latest turn fits,
    its content is shortened to the remaining budget.
    """
    if not messages:
        return []

    system = [messages[0]] if messages[0].get("role") == "system" else []
    rest = messages[len(system):]
    budget = max_tokens - sum(token_counter(m["content"]) for m in system)

    kept: List[Message] = []
    used = 0
    for message in reversed(rest):
        tokens = token_counter(message["content"])
        if used + tokens > budget:
            break
        kept.insert(0, message)
        used += tokens

    if not kept and rest and budget > 0:
        latest = rest[-1]
        kept = [{**latest, "content": _shorten(latest["content"], budget, token_counter)}]

    return system + kept


def _shorten(text: str, budget: int, token_counter: Callable[[str], int]) -> str:
    while text and token_counter(text) > budget:
        text = text[:int(len(text) * 0.9)]
    return text


def parse_structured_output(raw: str) -> Any:
    """
    Parse JSON from model output

    Code fences are stripped. If the whole text is not valid JSON, the first
    balanced {...} or [...] region is tried.

    Raises:
        MalformedGeneratedOutput: no parseable JSON was found
    """
    text = CODE_FENCE.sub('', raw or '').strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    region = _first_balanced_region(text)
    if region is not None:
        try:
            return json.loads(region)
        except json.JSONDecodeError:
            pass

    raise MalformedGeneratedOutput("No valid JSON in model output", raw=raw)


def parse_json_output(raw: str, default: Any) -> Any:
    """parse_structured_output, returning ``default`` when nothing parses"""
    try:
        return parse_structured_output(raw)
    except MalformedGeneratedOutput as e:
        logger.warning("Malformed structured output", error=str(e), preview=e.raw[:200])
        return default


def _first_balanced_region(text: str) -> Optional[str]:
    starts = [i for i in (text.find('{'), text.find('[')) if i >= 0]
    if not starts:
        return None

    start = min(starts)
    opener = text[start]
    closer = '}' if opener == '{' else ']'
    depth = 0
    in_string = False
    escaped = False

    for i in range(start, len(text)):
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return text[start:i + 1]

    return None


class CompletionClient:
    """
    Completion provider wrapper with request spacing and retries
    """

    def __init__(self, provider: CompletionProvider, config: Optional[GenerationConfig] = None,
                 token_counter: Callable[[str], int] = count_tokens,
                 clock: Callable[[], float] = time.monotonic):
        self.provider = provider
        self.config = config or GenerationConfig()
        self.token_counter = token_counter
        self._clock = clock
        self._last_request: Optional[float] = None
        self.request_count = 0

    async def complete(self, messages: List[Message], temperature: Optional[float] = None,
                       max_tokens: Optional[int] = None) -> str:
        """
        Run a chat completion

        Rate-limit and timeout errors are retried with exponential backoff.
        A context-length error is retried once with truncated messages.

        Raises:
            ProviderError: retries were exhausted or the provider failed outright
        """
        temperature = self.config.temperature if temperature is None else temperature
        max_tokens = max_tokens or self.config.max_tokens

        try:
            return await self._complete_with_retry(messages, temperature, max_tokens)
        except ContextTooLong:
            budget = int(self.config.max_prompt_tokens * TRUNCATION_RATIO)
            truncated = truncate_messages(messages, budget, self.token_counter)
            logger.warning("Context too long, retrying with truncated messages",
                           original_messages=len(messages), kept_messages=len(truncated),
                           token_budget=budget)
            return await self._complete_with_retry(truncated, temperature, max_tokens)

    async def _complete_with_retry(self, messages: List[Message], temperature: float,
                                   max_tokens: int) -> str:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.retry_count),
            wait=wait_exponential(multiplier=self.config.retry_delay, max=30),
            retry=retry_if_exception_type((RateLimited, ProviderTimeout)),
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                await self._wait_for_slot()
                return await self.provider.complete(
                    messages, temperature=temperature, max_tokens=max_tokens
                )

    async def _wait_for_slot(self) -> None:
        """Keep at least min_request_interval seconds between provider requests"""
        now = self._clock()
        slot = now
        if self._last_request is not None:
            slot = max(now, self._last_request + self.config.min_request_interval)
        # Reserve the slot before sleeping so concurrent callers queue behind it
        self._last_request = slot
        self.request_count += 1
        if slot > now:
            await asyncio.sleep(slot - now)

    @staticmethod
    def _log_retry(retry_state) -> None:
        error = retry_state.outcome.exception()
        logger.warning("Completion attempt failed, retrying",
                       attempt=retry_state.attempt_number,
                       error=str(error), error_type=type(error).__name__)


class AnswerGenerator:
    """
    Generates answers from question and retrieved context
    """

    def __init__(self, client: CompletionClient, config: Optional[GenerationConfig] = None):
        self.client = client
        self.config = config or client.config

    async def generate_answer(self, question: str, context: str) -> str:
        """
        Generate an answer grounded in context

        Raises:
            ProviderError: the completion could not be produced
        """
        messages = [
            {"role": "system", "content": prompts.ANSWER_SYSTEM_PROMPT},
            {"role": "user", "content": prompts.ANSWER_USER_PROMPT.format(context=context, question=question)},
        ]
        answer = await self.client.complete(
            messages,
            temperature=self.config.answer_temperature,
            max_tokens=self.config.answer_max_tokens,
        )
        return answer.strip()

    async def generate_structured(self, system_prompt: str, user_prompt: str, default: Any,
                                  temperature: Optional[float] = None) -> Any:
        """
        Generate and parse JSON output

        Returns ``default`` when the output cannot be parsed.

        Raises:
            ProviderError: the completion could not be produced
        """
        raw = await self.client.complete(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
        )
        return parse_json_output(raw, default)

    async def generate_text(self, system_prompt: str, user_prompt: str,
                            temperature: Optional[float] = None) -> str:
        raw = await self.client.complete(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
        )
        return raw.strip()
