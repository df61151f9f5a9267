"""Short session titles generated from the first answer."""

from typing import Optional

import httpx

from .config import TITLE_MODEL, TITLE_SOURCE_MAX_CHARS
from .openai_provider import stream_openai_response

TITLE_SYSTEM_PROMPT = (
    "You are a helpful assistant. Your task is to generate a very short, concise title "
    "(max 5 words) for a chat session based on the provided user question or content. "
    "Output ONLY the title, nothing else."
)


async def generate_session_title(question: str, client: Optional[httpx.AsyncClient] = None) -> str:
    """
    Generate a short title for a session.

    Args:
        question: The user's question or the first answer text
        client: Optional shared httpx client

    Returns:
        Title text, stripped (may be empty if the model returned nothing)
    """
    messages = [{"role": "user", "content": question[:TITLE_SOURCE_MAX_CHARS]}]
    title = ""
    async for event in stream_openai_response(
        messages,
        TITLE_MODEL,
        "low",
        system_instruction=TITLE_SYSTEM_PROMPT,
        client=client,
    ):
        if event.get("type") == "answer_delta" and event.get("content"):
            title += event["content"]
    return title.strip().strip('"')
