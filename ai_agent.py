"""
Geospatial Assistant AI Agent
Drives one chat turn: prompt assembly, the tool-calling completion loop,
token streaming, and the finish-time transcript write.

The loop is an explicit state machine. The model's reply is the input that
picks the transition: a reply carrying tool calls moves to TOOL_REQUESTED,
a reply without them ends the turn. Tool dispatch is strictly sequential,
and the number of tool round trips per turn is bounded.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncGenerator, Dict, List, Optional, Union

import tiktoken

from chat_store import BaseChatStore
from config import config
from engine import LLMEngine
from models import ChatMessage, ChatRequest, MessageRole, StoredMessage, ToolCall, ToolInvocation, UserContext
from prompts import get_system_prompt, get_title_prompt
from tool_executor import build_tool_executor
from tools import GeoAssistantTools, TurnContext
from transcript import TranscriptPersistence

MAX_TITLE_LENGTH = 80
STEP_BUDGET_MESSAGE = (
    "I've reached the maximum number of steps I can take for a single request. "
    "Here is where things stand; please let me know how you'd like to continue."
)

logger = logging.getLogger(__name__)


class LoopState(Enum):
    AWAITING_MODEL = "awaiting_model"
    TOOL_REQUESTED = "tool_requested"
    DISPATCHING = "dispatching"
    TOOL_RESULT_APPENDED = "tool_result_appended"
    FINAL_ANSWER = "final_answer"
    STEP_BUDGET_EXHAUSTED = "step_budget_exhausted"


TERMINAL_STATES = (LoopState.FINAL_ANSWER, LoopState.STEP_BUDGET_EXHAUSTED)


@dataclass
class ModelStep:
    """One complete model reply, assembled from streamed deltas."""
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)


class GeoAssistantAgent:
    def __init__(
        self,
        engine: LLMEngine,
        tools: GeoAssistantTools,
        chat_store: BaseChatStore,
        transcript: TranscriptPersistence,
        max_steps: int = config.MAX_TOOL_STEPS,
        max_tokens: int = config.MAX_TOKENS_PER_REQUEST,
    ):
        self.engine = engine
        self.tools = tools
        self.chat_store = chat_store
        self.transcript = transcript
        self.max_steps = max_steps
        self.max_tokens = max_tokens

    # ------------------------------------------------------------------
    # before the loop
    # ------------------------------------------------------------------

    async def prepare_turn(self, request: ChatRequest, user: UserContext) -> None:
        """Create the chat if needed and store the newest user message.

        Failures here propagate: nothing has been streamed yet.
        """
        user_message = self._get_last_user_message(request.messages)
        chat = await asyncio.to_thread(self.chat_store.get_chat, request.chat_id)
        if chat is None:
            first_user = self._get_first_user_message(request.messages) or user_message
            title = await self.generate_title(first_user.content if first_user else "")
            await asyncio.to_thread(self.chat_store.create_chat, request.chat_id, title, user.user_id)
            logger.info("Created chat %s for user %s", request.chat_id, user.user_id)

        if user_message is not None:
            stored = StoredMessage(
                id=str(uuid.uuid4()),
                chat_id=request.chat_id,
                role=MessageRole.USER,
                content=user_message.content,
                created_at=datetime.now(),
            )
            await asyncio.to_thread(self.chat_store.append_messages, request.chat_id, [stored])

    async def generate_title(self, first_message: str) -> str:
        title = await self.engine.complete_text(
            [{"role": "user", "content": first_message}],
            64,
            system_prompt=get_title_prompt(),
        )
        title = title.strip().strip('"') or first_message.strip() or "New chat"
        return title[:MAX_TITLE_LENGTH]

    def build_history(self, request: ChatRequest) -> List[ChatMessage]:
        """Caller history without system-role messages, trimmed to the context budget."""
        history = [m for m in request.messages if m.role != MessageRole.SYSTEM]
        return self._trim_to_context(history)

    def _trim_to_context(self, history: List[ChatMessage]) -> List[ChatMessage]:
        budget = config.MAX_CONTEXT_TOKENS
        # a token is never shorter than one character
        if sum(len(m.content) for m in history) <= budget:
            return history
        try:
            enc = tiktoken.encoding_for_model(self.engine.model)
        except KeyError:
            enc = tiktoken.get_encoding("cl100k_base")
        sizes = [len(enc.encode(m.content)) for m in history]
        total = sum(sizes)
        while total > budget and len(history) > 1:
            total -= sizes.pop(0)
            history = history[1:]
        # a tool result may not lead the context without its call
        while len(history) > 1 and history[0].role == MessageRole.TOOL:
            history = history[1:]
        logger.info("Trimmed history to %d messages (%d tokens)", len(history), total)
        return history

    # ------------------------------------------------------------------
    # the loop
    # ------------------------------------------------------------------

    async def run_turn(
        self,
        request: ChatRequest,
        user: UserContext,
        forward_headers: Optional[Dict[str, str]] = None,
    ) -> AsyncGenerator[Dict[str, Any], None]:
        """Stream one turn as event dicts; persists the transcript when the loop ends."""
        system_prompt = get_system_prompt()
        messages = self.build_history(request)
        executor = build_tool_executor(self.tools, user.max_area)
        declarations = executor.declarations()
        ctx = TurnContext(
            chat_id=request.chat_id,
            user=user,
            roi_geometry=request.roi_geometry(),
            selected_roi=request.selected_roi_geometry,
            map_layer_names=list(request.map_layer_names),
            forward_headers=dict(forward_headers or {}),
        )

        produced: List[ChatMessage] = []
        invocations: List[ToolInvocation] = []
        steps = 0
        state = LoopState.AWAITING_MODEL
        step = ModelStep()

        try:
            while state not in TERMINAL_STATES:
                if state == LoopState.AWAITING_MODEL:
                    has_budget = steps < self.max_steps
                    async for item in self._stream_model_step(
                        messages, system_prompt, declarations, "auto" if has_budget else "none"
                    ):
                        if isinstance(item, ModelStep):
                            step = item
                        else:
                            yield self._response_event(item, request.chat_id, state)

                    if not has_budget:
                        if step.tool_calls:
                            logger.warning(
                                "Suppressed %d tool call(s) after %d steps in chat %s",
                                len(step.tool_calls), steps, request.chat_id,
                            )
                        if not step.content:
                            step.content = STEP_BUDGET_MESSAGE
                            yield self._response_event(STEP_BUDGET_MESSAGE, request.chat_id, state)
                        self._append(messages, produced, ChatMessage(role=MessageRole.ASSISTANT, content=step.content))
                        state = LoopState.STEP_BUDGET_EXHAUSTED
                    elif step.tool_calls:
                        self._append(messages, produced, ChatMessage(
                            role=MessageRole.ASSISTANT, content=step.content, tool_calls=step.tool_calls
                        ))
                        state = LoopState.TOOL_REQUESTED
                    else:
                        if step.content:
                            self._append(messages, produced, ChatMessage(role=MessageRole.ASSISTANT, content=step.content))
                        state = LoopState.FINAL_ANSWER

                elif state == LoopState.TOOL_REQUESTED:
                    steps += 1
                    logger.debug("Tool step %d/%d: %s", steps, self.max_steps, [tc.name for tc in step.tool_calls])
                    state = LoopState.DISPATCHING

                elif state == LoopState.DISPATCHING:
                    for tc in step.tool_calls:
                        yield {
                            "type": "tool_call",
                            "tool_name": tc.name,
                            "tool_call_id": tc.id,
                            "session_id": request.chat_id,
                            "timestamp": datetime.now().isoformat(),
                            "metadata": {"phase": state.value, "step": steps},
                        }
                        ctx.history = [m.to_llm() for m in messages]
                        invocation = await executor.execute(tc.id, tc.name, tc.arguments, ctx)
                        invocations.append(invocation)
                        self._append(messages, produced, ChatMessage(
                            role=MessageRole.TOOL,
                            tool_call_id=tc.id,
                            name=tc.name,
                            content=json.dumps(invocation.result_payload(), default=str),
                        ))
                        yield {
                            "type": "tool_result",
                            "tool_name": tc.name,
                            "tool_call_id": tc.id,
                            "data": invocation.result_payload(),
                            "is_error": not invocation.success,
                            "session_id": request.chat_id,
                            "timestamp": datetime.now().isoformat(),
                            "metadata": {"phase": state.value, "step": steps, "duration_s": invocation.execution_time},
                        }
                    state = LoopState.TOOL_RESULT_APPENDED

                elif state == LoopState.TOOL_RESULT_APPENDED:
                    state = LoopState.AWAITING_MODEL

        except asyncio.CancelledError:
            logger.info("Turn cancelled for chat %s after %d tool step(s)", request.chat_id, steps)
            raise
        except Exception as e:
            logger.exception("Completion loop failed for chat %s: %s", request.chat_id, e)
            await self.transcript.sanitize_and_store(request.chat_id, produced)
            yield {"type": "error", "message": "streaming_error", "session_id": request.chat_id}
            return

        await self.transcript.sanitize_and_store(request.chat_id, produced)
        yield {
            "type": "final",
            "is_final": True,
            "session_id": request.chat_id,
            "timestamp": datetime.now().isoformat(),
            "function_calls": [
                {"name": inv.name, "arguments": inv.arguments, "success": inv.success}
                for inv in invocations
            ],
            "metadata": {"phase": state.value, "steps": steps, "model": self.engine.model},
        }

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _stream_model_step(
        self,
        messages: List[ChatMessage],
        system_prompt: str,
        declarations: List[Dict[str, Any]],
        tool_choice: str,
    ) -> AsyncGenerator[Union[str, ModelStep], None]:
        """Yield text deltas as they arrive, then the assembled ModelStep."""
        stream = await self.engine.completion(
            [m.to_llm() for m in messages],
            self.max_tokens,
            system_prompt=system_prompt,
            tools=declarations,
            tool_choice=tool_choice,
            stream=True,
        )
        content = ""
        tool_call_dicts: Dict[int, Dict[str, Any]] = {}
        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            if delta.content:
                content += delta.content
                yield delta.content
            if delta.tool_calls:
                for tc_delta in delta.tool_calls:
                    rec = tool_call_dicts.setdefault(
                        tc_delta.index, {"id": None, "function": {"name": "", "arguments": ""}}
                    )
                    if tc_delta.id:
                        rec["id"] = tc_delta.id
                    if tc_delta.function and tc_delta.function.name:
                        rec["function"]["name"] = tc_delta.function.name
                    if tc_delta.function and tc_delta.function.arguments:
                        rec["function"]["arguments"] += tc_delta.function.arguments

        tool_calls = [
            ToolCall(id=rec["id"] or f"call_{uuid.uuid4().hex[:24]}", function=rec["function"])
            for _, rec in sorted(tool_call_dicts.items())
        ]
        yield ModelStep(content=content, tool_calls=tool_calls)

    @staticmethod
    def _append(messages: List[ChatMessage], produced: List[ChatMessage], message: ChatMessage) -> None:
        messages.append(message)
        produced.append(message)

    @staticmethod
    def _response_event(content: str, chat_id: str, state: LoopState) -> Dict[str, Any]:
        return {
            "type": "response",
            "content": content,
            "session_id": chat_id,
            "is_streaming_chunk": True,
            "metadata": {"phase": state.value},
        }

    @staticmethod
    def _get_last_user_message(messages: List[ChatMessage]) -> Optional[ChatMessage]:
        for msg in reversed(messages):
            if msg.role == MessageRole.USER:
                return msg
        return None

    @staticmethod
    def _get_first_user_message(messages: List[ChatMessage]) -> Optional[ChatMessage]:
        for msg in messages:
            if msg.role == MessageRole.USER:
                return msg
        return None
