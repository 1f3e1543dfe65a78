"""Answer generation from retrieved evidence, gated by retrieval confidence."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import openai

from core.config import settings
from core.errors import ProviderError
from core.models import Answer, ConfidenceTier, RetrievalResult
from retrieval.citations import format_citations
from retrieval.confidence import assess
from retrieval.retriever import RetrievalConfig

if TYPE_CHECKING:
    from openai import AsyncOpenAI

    from retrieval.retriever import Retriever

logger = logging.getLogger(__name__)

EMPTY_QUERY_RESPONSE = "Please enter a question or message."
ESCALATION_RESPONSE = (
    "There is not enough information in the moderator guide to answer this. "
    "Please consult a senior staff member."
)

# Queries mentioning any of these go through the penalty fusion channel.
PENALTY_KEYWORDS = (
    "penalty",
    "punish",
    "ceza",
    "mute",
    "ban",
    "kick",
    "warn",
    "uyarı",
    "ihlal",
    "kural",
    "rule",
    "yasak",
    "adk",
    "hakaret",
    "insult",
    "spam",
    "reklam",
    "küfür",
    "flood",
    "caps",
    "mention",
    "süre",
    "duration",
    "gün",
    "saat",
    "kalıcı",
    "blacklist",
    "marked",
)

SYSTEM_PROMPT = (
    "You are an assistant for Discord moderators. Answer ONLY from the "
    "moderator guide excerpts in the context below. If the context does not "
    "contain the answer, say so and recommend consulting a senior staff "
    "member. Quote penalty codes and durations exactly as written.\n\n"
    "Context:\n{context}"
)


def is_penalty_query(query: str) -> bool:
    lowered = query.lower()
    return any(keyword in lowered for keyword in PENALTY_KEYWORDS)


async def answer_question(
    query: str,
    retriever: Retriever,
    *,
    use_offline: bool = False,
    openai_client: AsyncOpenAI | None = None,
) -> Answer:
    """Answer a moderator question from the evidence index.

    Low-confidence retrieval (including no evidence at all) is never answered
    from evidence: the response asks for escalation, cites nothing and
    reports context_used=False.

    Args:
        query: User question
        retriever: Retriever over the evidence index
        use_offline: Use offline embeddings and an extractive reply
        openai_client: Optional async OpenAI client for the prose answer

    Returns:
        Answer with response text, sources and confidence tier
    """
    if not query or not query.strip():
        return Answer(response=EMPTY_QUERY_RESPONSE)

    config = RetrievalConfig(use_offline=use_offline)
    if is_penalty_query(query):
        result = await retriever.retrieve_penalty_context(query, config)
    else:
        result = await retriever.retrieve(query, config)

    score, tier = assess(result)
    logger.info("Confidence %.2f (%s) for query: %s", score, tier.value, query)

    if tier is ConfidenceTier.LOW:
        return Answer(
            response=ESCALATION_RESPONSE,
            sources=[],
            confidence=tier,
            confidence_score=score,
            context_used=False,
        )

    if openai_client is None and not use_offline and settings.openai_api_key:
        from openai import AsyncOpenAI

        openai_client = AsyncOpenAI(api_key=settings.openai_api_key)

    if use_offline or openai_client is None:
        text = extractive_answer(result)
    else:
        text = await generate_prose(query, result.context, openai_client)

    citations = format_citations(result.sources)
    if citations:
        text = f"{text}\n\nSources:\n{citations}"

    return Answer(
        response=text,
        sources=result.sources,
        confidence=tier,
        confidence_score=score,
        context_used=True,
    )


def extractive_answer(result: RetrievalResult) -> str:
    """Offline reply: the best-ranked chunk under its title."""
    top = result.chunks[0]
    return f"**{top.title}**\n\n{top.text}"


async def generate_prose(query: str, context: str, openai_client: AsyncOpenAI) -> str:
    """Ask the chat model to answer `query` from `context` only."""
    try:
        response = await openai_client.chat.completions.create(
            model=settings.llm_model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT.format(context=context)},
                {"role": "user", "content": query},
            ],
            temperature=0.3,
            max_tokens=1000,
        )
    except openai.OpenAIError as e:
        logger.error("Error generating answer: %s", e)
        raise ProviderError(f"OpenAI API error: {e}") from e

    answer_text = response.choices[0].message.content or ""
    logger.info("Generated answer: %s", answer_text[:100])
    return answer_text
