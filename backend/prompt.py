"""Prompt builders for the site summary and follow-up answers."""

from __future__ import annotations

from typing import Sequence

import structlog

from models import PageRecord

logger = structlog.get_logger(__name__)


SUMMARY_PAGE_CHARS = 3000
ANSWER_PAGE_CHARS = 3500
_TRUNCATION_MARK = "...(truncated)"

SUMMARY_INSTRUCTIONS = """INSTRUCTIONS:
Create a brief, scannable summary that gives the user a quick understanding. Keep it concise and informative.

**## What This Site Is About**
Write 2-3 sentences clearly explaining what this company/website does and their main value proposition.

**## Key Highlights**
List 4-6 of the most important or interesting points about this site (products, features, or notable aspects). Use bullet points (-).

**## Industry & Audience**
In 1-2 sentences, state the industry and who this is for.

**## Ask Me More**
Suggest 2-3 specific follow-up questions the user might want to ask, formatted as:
- "What are their main products?"
- "Who are their target customers?"
- "What makes them unique?"

FORMAT:
- Keep it brief and scannable
- Use bullet points for lists
- Be specific and factual
- Write in a friendly, professional tone
- Make the suggested questions relevant to THIS specific website"""

ANSWER_INSTRUCTIONS = """INSTRUCTIONS:
- Answer the question directly and comprehensively based on the website content above
- Be specific and detailed - this is a follow-up question where the user wants in-depth information
- Use bullet points or lists when appropriate for clarity
- Include relevant examples or specifics from the pages
- If the question asks for a list, provide as many items as you can find (5-10+ items if available)
- Use markdown formatting for better readability (headings, bold, lists)
- If the information isn't in the crawled content, say so politely

Keep your answer focused, informative, and well-structured."""


def _page_block(index: int, page: PageRecord, limit: int) -> str:
    content = page.content[:limit]
    if len(page.content) > limit:
        content = f"{content}\n{_TRUNCATION_MARK}"
    return f"PAGE {index}: {page.title}\nURL: {page.url.href}\nCONTENT:\n{content}\n---"


def _pages_block(pages: Sequence[PageRecord], limit: int) -> str:
    return "\n\n".join(_page_block(idx, page, limit) for idx, page in enumerate(pages, 1))


def build_summary_prompt(pages: Sequence[PageRecord], origin_url: str) -> str:
    """Return the prompt asking for a short overview of the crawled site."""
    prompt = (
        "You are an expert web analyst providing a concise initial summary of a website.\n\n"
        f"WEBSITE: {origin_url}\n"
        f"PAGES ANALYZED: {len(pages)}\n\n"
        f"CONTENT FROM CRAWLED PAGES:\n{_pages_block(pages, SUMMARY_PAGE_CHARS)}\n\n"
        f"{SUMMARY_INSTRUCTIONS}"
    )
    logger.debug("summary prompt built", length=len(prompt), pages=len(pages))
    return prompt


def build_answer_prompt(question: str, pages: Sequence[PageRecord], origin_url: str) -> str:
    """Return the prompt answering ``question`` from the cached pages only."""
    prompt = (
        "You are an AI assistant helping users understand information from a website "
        "that has been analyzed.\n\n"
        f"Website analyzed: {origin_url}\n"
        f"Number of pages crawled: {len(pages)}\n\n"
        "Here is the content from the crawled pages:\n\n"
        f"{_pages_block(pages, ANSWER_PAGE_CHARS)}\n\n"
        f"USER QUESTION: {question}\n\n"
        f"{ANSWER_INSTRUCTIONS}"
    )
    logger.debug("answer prompt built", length=len(prompt), pages=len(pages))
    return prompt


def build_fallback_summary(pages: Sequence[PageRecord]) -> str:
    """Plain listing used when no text generator is configured."""
    listing = "\n\n".join(
        f"{idx}. {page.title}\n   {page.url.href}" for idx, page in enumerate(pages, 1)
    )
    return (
        f"Successfully crawled {len(pages)} page(s):\n\n{listing}\n\n"
        "AI summarization is not available. Configure an LLM provider "
        "(e.g. ANTHROPIC_API_KEY) in your .env file."
    )


def format_summary(summary: str, pages_analyzed: int, model: str) -> str:
    return f"{summary}\n\n---\n\n**Pages Analyzed:** {pages_analyzed} | **Model:** {model}"
