"""
Insight Requester (Spending Tips)

DESIGN DECISION: The LLM only ever sees aggregates the engine already
computed. It receives totals and the top categories, never raw rows,
and the text it returns is shown as-is. Tip content is not validated.

CRITICAL BOUNDARIES:
- CAN: Turn a spending summary into a short list of tips
- CANNOT: Change any number the engine produced
- MUST: Fail softly. A missing tip list never breaks the dashboard;
  callers get InsightUnavailable and carry on.

Retry contract:
- HTTP 429 and 5xx responses, and network errors, are retried
- Backoff starts at 1s and doubles on every attempt
- After the attempt ceiling (default 5), or on any other status,
  InsightUnavailable is raised
"""

import asyncio
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

import google.generativeai as genai
import structlog
from google.api_core import exceptions as google_exceptions
from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from src.config import GeminiSettings
from src.models.views import AggregateSnapshot, ZERO


logger = structlog.get_logger(__name__)


class InsightUnavailable(Exception):
    """Tips could not be generated; the caller should degrade gracefully."""

    def __init__(self, message: str, attempts: int = 1):
        self.attempts = attempts
        super().__init__(message)


class CategoryTotal(BaseModel):
    """One line of the top-categories list in the prompt."""

    name: str
    amount: Decimal
    count: int


class InsightRequest(BaseModel):
    """
    The spending summary sent to the model.

    Built from an AggregateSnapshot; nothing else is shared.
    """

    total_expenses: Decimal = ZERO
    total_income: Decimal = ZERO
    net_cash_flow: Decimal = ZERO
    top_categories: list[CategoryTotal] = Field(default_factory=list)
    active_goals: int = Field(default=0, ge=0)
    currency_code: str = "INR"

    @classmethod
    def from_snapshot(
        cls,
        snapshot: AggregateSnapshot,
        currency_code: str = "INR",
        top: int = 5,
    ) -> 'InsightRequest':
        ranked = sorted(
            snapshot.category_breakdown.items(),
            key=lambda item: item[1].amount,
            reverse=True,
        )[:top]
        return cls(
            total_expenses=snapshot.cash_flow.total_expenses,
            total_income=snapshot.cash_flow.total_income,
            net_cash_flow=snapshot.cash_flow.net,
            top_categories=[
                CategoryTotal(name=name, amount=entry.amount, count=entry.count)
                for name, entry in ranked
            ],
            active_goals=sum(1 for entry in snapshot.savings if not entry.achieved),
            currency_code=currency_code,
        )


class InsightResult(BaseModel):
    """Generated tips plus how many attempts it took."""

    text: str
    attempts: int = 1


def build_tips_prompt(request: InsightRequest) -> str:
    """Prompt asking for 3-5 expense reduction tips from the summary."""
    def money(value: Decimal) -> str:
        return f"{request.currency_code} {value:,.2f}"

    top = ", ".join(
        f"{c.name}: {money(c.amount)} ({c.count} transactions)"
        for c in request.top_categories
    ) or "N/A"

    return f"""Given the following financial data for a user:
- Total Expenses: {money(request.total_expenses)}
- Top 5 Expense Categories: {top}
- Total Income: {money(request.total_income)}
- Net Cash Flow: {money(request.net_cash_flow)}
- Number of active savings goals: {request.active_goals}

Please provide 3-5 concise, actionable, and practical tips for reducing expenses.
Focus on general advice and specific suggestions related to common expense
categories if available. Avoid generic statements and be encouraging.
Format the tips as a numbered list using Markdown."""


def is_retryable_insight_error(error: BaseException) -> bool:
    """429, 5xx and network failures are worth another attempt."""
    if isinstance(error, google_exceptions.GoogleAPICallError):
        code = error.code or 0
        return code == 429 or code >= 500
    return isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError))


class InsightRequester:
    """
    Requests spending tips from Gemini.

    The model and sleep are injectable so tests never call the API and
    never wait for real backoff delays.
    """

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        model: Optional[Any] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self._settings = settings or GeminiSettings()
        self._sleep = sleep or asyncio.sleep
        self._model = model or self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        return genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
            }
        )

    async def _generate_once(self, prompt: str) -> str:
        response = await self._model.generate_content_async(prompt)
        try:
            text = response.text
        except ValueError as e:
            # Blocked or empty candidates
            raise InsightUnavailable(f"Gemini returned no usable text: {e}") from e
        if not text or not text.strip():
            raise InsightUnavailable("Gemini returned an empty response")
        return text.strip()

    async def generate(self, request: InsightRequest) -> InsightResult:
        """
        Generate tips with retries.

        Raises:
            InsightUnavailable: after exhausting attempts or on a
                non-retryable error
        """
        prompt = build_tips_prompt(request)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.max_attempts),
            wait=wait_exponential(multiplier=self._settings.backoff_base_seconds),
            retry=retry_if_exception(is_retryable_insight_error),
            sleep=self._sleep,
            reraise=False,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    text = await self._generate_once(prompt)
        except RetryError as e:
            attempts = e.last_attempt.attempt_number
            cause = e.last_attempt.exception()
            logger.warning("insight_retries_exhausted", attempts=attempts, error=str(cause))
            raise InsightUnavailable(
                f"Failed to get tips after {attempts} attempts: {cause}",
                attempts=attempts,
            ) from cause
        except InsightUnavailable as e:
            e.attempts = retrying.statistics.get("attempt_number", 1)
            raise
        except Exception as e:
            attempts = retrying.statistics.get("attempt_number", 1)
            logger.warning("insight_request_failed", attempts=attempts, error=str(e))
            raise InsightUnavailable(f"Gemini API error: {e}", attempts=attempts) from e

        return InsightResult(
            text=text,
            attempts=retrying.statistics.get("attempt_number", 1),
        )

    async def request_insights(self, request: InsightRequest) -> str:
        """Generate tips and return only the text."""
        result = await self.generate(request)
        return result.text
