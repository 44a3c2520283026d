"""Thin wrapper around Anthropic async client."""
from __future__ import annotations

from typing import Iterable

from anthropic import AsyncAnthropic

from volunteer_automation.config import settings


_client: AsyncAnthropic | None = None


def get_anthropic_client() -> AsyncAnthropic:
    global _client
    if _client is None:
        _client = AsyncAnthropic(api_key=settings.anthropic_api_key.get_secret_value())
    return _client


async def generate_chat_completion(
    messages: Iterable[dict[str, str]],
    max_tokens: int | None = None,
) -> str:
    """Send role-tagged messages and return the completion text.

    ``system`` messages are folded into Anthropic's top-level system prompt;
    the rest are passed through in order.
    """
    system_parts: list[str] = []
    chat: list[dict[str, str]] = []
    for message in messages:
        if message["role"] == "system":
            system_parts.append(message["content"])
        else:
            chat.append({"role": message["role"], "content": message["content"]})

    kwargs = {}
    if system_parts:
        kwargs["system"] = "\n\n".join(system_parts)

    response = await get_anthropic_client().messages.create(
        model=settings.anthropic_model,
        max_tokens=max_tokens or settings.anthropic_max_tokens,
        messages=chat,
        **kwargs,
    )
    return "".join(block.text for block in response.content if getattr(block, "type", "text") == "text").strip()
