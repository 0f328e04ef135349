"""
Completion Gateway — The council's only way to talk to a language model.

WHAT THIS DOES:
Wraps a text-generation provider behind two calls:
- complete(): one-shot, returns the whole reply (used by the judge)
- stream_complete(): yields the reply chunk by chunk (used by workers, so
  the caller can watch drafts being written)

Every provider failure is raised as GatewayError. The orchestrator decides
what a failure means (sentinel draft for a worker, fail-soft verdict for
the judge); the gateway never guesses.

MESSAGE LAYOUT:
    system: <persona instruction>
    user:   <query or judge prompt>
    user:   <prior feedback>          (only when refining a previous answer)

USAGE:
    gateway = OpenAICompletionGateway(model="gpt-4o-mini")
    text = await gateway.complete(persona.instruction, query)

    async for chunk in gateway.stream_complete(persona.instruction, query):
        print(chunk, end="")
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from functools import lru_cache
from typing import Optional

from openai import AsyncOpenAI, OpenAIError

from council.config import get_settings
from council.services.debate.errors import GatewayError

logger = logging.getLogger(__name__)


def build_messages(
    system_instruction: str,
    user_message: str,
    prior_feedback: Optional[str] = None,
) -> list[dict]:
    """Build the chat message list for one completion call."""
    messages = [
        {"role": "system", "content": system_instruction},
        {"role": "user", "content": user_message},
    ]
    if prior_feedback:
        messages.append({"role": "user", "content": prior_feedback})
    return messages


class CompletionGateway(ABC):
    """
    Abstract base class for text-completion providers.

    Implement complete(); override stream_complete() and supports_streaming
    when the provider can deliver incremental output.
    """

    @property
    def supports_streaming(self) -> bool:
        """Whether stream_complete() delivers real incremental chunks."""
        return False

    @abstractmethod
    async def complete(
        self,
        system_instruction: str,
        user_message: str,
        prior_feedback: Optional[str] = None,
        *,
        json_mode: bool = False,
    ) -> str:
        """
        Generate a full reply.

        Args:
            system_instruction: Persona / behaviour instruction
            user_message: The query (or the judge prompt)
            prior_feedback: Optional follow-up user message (judge critique)
            json_mode: Ask the provider for a JSON object reply

        Returns:
            The reply text

        Raises:
            GatewayError: On any provider failure or an empty reply
        """
        pass

    async def stream_complete(
        self,
        system_instruction: str,
        user_message: str,
        prior_feedback: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """
        Generate a reply as a finite sequence of text chunks.

        The default delivers the whole completion as a single chunk.
        """
        yield await self.complete(system_instruction, user_message, prior_feedback)


class OpenAICompletionGateway(CompletionGateway):
    """
    Completion gateway backed by OpenAI chat completions.

    One instance per model: the council uses a cheap model for workers and
    a stronger one for the judge.
    """

    def __init__(self, model: str, client: Optional[AsyncOpenAI] = None):
        """
        Args:
            model: Chat model name (e.g. "gpt-4o-mini")
            client: Optional pre-built client (defaults to one using the configured key)
        """
        self.model = model
        if client is None:
            settings = get_settings()
            client = AsyncOpenAI(api_key=settings.openai_api_key)
        self.client = client

    @property
    def supports_streaming(self) -> bool:
        return True

    async def complete(
        self,
        system_instruction: str,
        user_message: str,
        prior_feedback: Optional[str] = None,
        *,
        json_mode: bool = False,
    ) -> str:
        messages = build_messages(system_instruction, user_message, prior_feedback)
        extra = {"response_format": {"type": "json_object"}} if json_mode else {}

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                **extra,
            )
        except OpenAIError as e:
            raise GatewayError(f"{self.model} completion failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise GatewayError(f"{self.model} returned an empty completion")

        logger.debug(f"{self.model} completion: {len(content)} chars")
        return content

    async def stream_complete(
        self,
        system_instruction: str,
        user_message: str,
        prior_feedback: Optional[str] = None,
    ) -> AsyncIterator[str]:
        messages = build_messages(system_instruction, user_message, prior_feedback)

        try:
            stream = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                stream=True,
            )
            # Closing releases the HTTP response when a caller stops early
            async with stream:
                async for chunk in stream:
                    if not chunk.choices:
                        continue
                    delta = chunk.choices[0].delta.content
                    if delta:
                        yield delta
        except OpenAIError as e:
            raise GatewayError(f"{self.model} stream failed: {e}") from e


# =============================================================================
# FACTORIES
# =============================================================================

@lru_cache
def get_worker_gateway() -> CompletionGateway:
    """Gateway used for every worker call."""
    return OpenAICompletionGateway(model=get_settings().worker_model)


@lru_cache
def get_judge_gateway() -> CompletionGateway:
    """Gateway used for the judge call."""
    return OpenAICompletionGateway(model=get_settings().judge_model)
