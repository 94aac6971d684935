"""Auxiliary model functions: one-shot Claude calls outside the main stream.

Shared by the follow-up/title side effects, the /react tangent agent, and
the imagine-prompt writer.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

import anthropic

from config.settings import Settings
from core.cancellation import CancellationToken
from core.models import Role, create_message
from core.token_tracker import TokenTracker

if TYPE_CHECKING:
    from store.conversations import ConversationStore

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
BASE_DELAY = 1.0  # seconds

TANGENT_PROMPT = """Answer the following question. Think it through step by step first,
then give the final answer on its own line starting with "Answer:".

Question: {question}"""

IMAGINE_PROMPT = """Write a short, vivid prompt for an image generator that illustrates the message below.
Describe the scene, style and mood in one or two sentences. Reply with the prompt only.

Message:
{text}"""


async def call_claude_text(
    client: anthropic.AsyncAnthropic,
    model: str,
    prompt: str,
    max_tokens: int = 512,
    system: str | None = None,
) -> str | None:
    """Single-turn Claude call with exponential backoff on rate limits.

    Returns None when the call ultimately fails.
    """
    last_error: Exception | None = None
    kwargs: dict[str, Any] = {
        "model": model,
        "max_tokens": max_tokens,
        "messages": [{"role": "user", "content": prompt}],
    }
    if system:
        kwargs["system"] = system

    for attempt in range(MAX_RETRIES):
        try:
            response = await client.messages.create(**kwargs)
            TokenTracker().record(response.usage, model=model)
            return "".join(b.text for b in response.content if b.type == "text")

        except anthropic.RateLimitError as e:
            last_error = e
            delay = BASE_DELAY * (2 ** attempt)
            logger.warning("Rate limited, retrying in %.1fs (attempt %d)", delay, attempt + 1)
            await asyncio.sleep(delay)

        except (anthropic.APITimeoutError, anthropic.APIError) as e:
            last_error = e
            logger.warning("Claude API error: %s", e)
            break

    logger.error("Claude call failed: %s", last_error)
    return None


def parse_json_block(raw_text: str) -> Any | None:
    """Parse JSON from a model reply, tolerating markdown code fences and chatter."""
    text = raw_text.strip()

    if text.startswith("```"):
        lines = text.split("\n")[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines).strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    for opener, closer in (("{", "}"), ("[", "]")):
        start = text.find(opener)
        end = text.rfind(closer)
        if start != -1 and end > start:
            try:
                return json.loads(text[start:end + 1])
            except json.JSONDecodeError:
                continue
    return None


class TangentAgent:
    """The /react path: answers a side question in its own assistant message."""

    def __init__(
        self,
        store: ConversationStore,
        settings: Settings | None = None,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        self.store = store
        self.settings = settings or Settings()
        self.client = client or anthropic.AsyncAnthropic(api_key=self.settings.ANTHROPIC_API_KEY)

    async def run(self, conversation_id: str, prompt: str, llm_id: str) -> str:
        message = create_message(Role.ASSISTANT, "")
        message.typing = True
        message.origin_llm = f"react-{llm_id}"
        self.store.append_message(conversation_id, message)
        # the tangent owns the in-flight slot like any assistant turn
        token = CancellationToken()
        self.store.start_typing(conversation_id, token, message.id)

        text = "Issue: the tangent agent could not reach the model."
        try:
            answer = await call_claude_text(
                self.client,
                llm_id or self.settings.MODEL_TANGENT,
                TANGENT_PROMPT.format(question=prompt),
                max_tokens=self.settings.MAX_RESPONSE_TOKENS,
            )
            if answer is not None:
                text = _final_answer(answer)
        except Exception as e:
            text = f"Issue: {e}"
            raise
        finally:
            if self.store.get(conversation_id) is not None:
                self.store.patch_message(conversation_id, message.id, text=text, typing=False)
                self.store.stop_typing(conversation_id, token)
        logger.info("Tangent answered in %s (%d chars)", conversation_id, len(text))
        return message.id


def _final_answer(reply: str) -> str:
    for line in reversed(reply.strip().splitlines()):
        if line.strip().lower().startswith("answer:"):
            return line.split(":", 1)[1].strip() or reply.strip()
    return reply.strip()


async def imagine_prompt_from_text(
    text: str,
    settings: Settings | None = None,
    client: anthropic.AsyncAnthropic | None = None,
) -> str | None:
    """Turn a chat message into an image-generation prompt."""
    settings = settings or Settings()
    client = client or anthropic.AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)
    reply = await call_claude_text(
        client, settings.MODEL_TANGENT, IMAGINE_PROMPT.format(text=text), max_tokens=200,
    )
    if not reply:
        return None
    return reply.strip().strip('"').strip() or None
