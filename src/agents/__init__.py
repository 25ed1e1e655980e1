"""AI Agents package."""

from src.agents.insight_agent import (
    CategoryTotal,
    InsightRequest,
    InsightRequester,
    InsightResult,
    InsightUnavailable,
    build_tips_prompt,
    is_retryable_insight_error,
)

__all__ = [
    "CategoryTotal",
    "InsightRequest",
    "InsightRequester",
    "InsightResult",
    "InsightUnavailable",
    "build_tips_prompt",
    "is_retryable_insight_error",
]
