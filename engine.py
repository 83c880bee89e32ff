"""engine.py – chat-model access for the assistant.

Two call shapes are offered:
- `completion`: the function-calling call the agent loop streams from;
- `complete_text`: a one-shot, tool-free call (chat titles, report drafts).

Callers hand the system prompt over separately from the history; it is
always sent as the first message and any system message in the history is
dropped. OpenAI models go through the official async client, everything
else (azure/, anthropic/, ...) through LiteLLM. Transient provider errors
are retried with exponential backoff.

Knows nothing about chats, tools, or quotas.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import litellm
from openai import AsyncOpenAI
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential_jitter

from config import config

logger = logging.getLogger(__name__)

OPENAI_PREFIXES = ("gpt-", "o1", "o3", "o4", "openai/")
# These take max_completion_tokens and reject a temperature
REASONING_PREFIXES = ("gpt-5", "o1", "o3", "o4")

TRANSIENT_MARKERS = (
    "rate limit",
    "429",
    "connection",
    "timeout",
    "network",
    "502",
    "503",
    "504",
    "service unavailable",
    "internal server error",
)


def is_retryable_error(error: Exception) -> bool:
    text = str(error).lower()
    return any(marker in text for marker in TRANSIENT_MARKERS)


class LLMEngine:
    """One configured chat model.

    `client` is the shared AsyncOpenAI client; built from config on first
    use when not given.
    """

    def __init__(self, model: str, client: Optional[AsyncOpenAI] = None) -> None:
        self.model = model
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=config.OPENAI_API_KEY,
                base_url=config.OPENAI_BASE_URL,
                timeout=config.OPENAI_TIMEOUT_S,
            )
        return self._client

    async def completion(
        self,
        messages: List[Dict[str, Any]],
        max_tokens: int,
        system_prompt: Optional[str] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[str] = None,
        stream: bool = False,
    ):
        """Returns the provider response; an async iterator of chunks when stream=True."""
        params = self.build_params(
            self.with_system_prompt(messages, system_prompt),
            max_tokens,
            tools=tools,
            tool_choice=tool_choice,
            stream=stream,
        )
        logger.debug("Calling %s (stream=%s, tools=%d, tool_choice=%s)",
                     self.model, stream, len(tools or []), params.get("tool_choice"))
        return await self._dispatch(params)

    async def complete_text(
        self,
        messages: List[Dict[str, Any]],
        max_tokens: int,
        system_prompt: Optional[str] = None,
    ) -> str:
        response = await self.completion(messages, max_tokens, system_prompt=system_prompt, tools=[])
        return response.choices[0].message.content or ""

    @staticmethod
    def with_system_prompt(messages: List[Dict[str, Any]], system_prompt: Optional[str]) -> List[Dict[str, Any]]:
        if not system_prompt:
            return messages
        history = [m for m in messages if m.get("role") != "system"]
        return [{"role": "system", "content": system_prompt}] + history

    def build_params(
        self,
        messages: List[Dict[str, Any]],
        max_tokens: int,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[str] = None,
        stream: bool = False,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"model": self.model, "messages": messages}
        if self.model.startswith(REASONING_PREFIXES):
            params["max_completion_tokens"] = max_tokens
        else:
            params["max_tokens"] = max_tokens
            params["temperature"] = config.TEMPERATURE

        # OpenAI rejects tool_choice without tools
        if tools:
            params["tools"] = tools
            if tool_choice:
                params["tool_choice"] = tool_choice
        if stream:
            params["stream"] = True
        return params

    @retry(
        retry=retry_if_exception(is_retryable_error),
        stop=stop_after_attempt(4),
        wait=wait_exponential_jitter(1.0, 60.0),
        reraise=True,
    )
    async def _dispatch(self, params: Dict[str, Any]):
        if self.model.startswith(OPENAI_PREFIXES):
            return await self.client.chat.completions.create(
                **{**params, "model": self.model.removeprefix("openai/")}
            )
        return await litellm.acompletion(**params)
