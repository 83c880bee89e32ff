"""tool_executor.py – declares the callable tools and executes model tool calls.

Each tool is a (name, argument schema, handler) triple keyed by name. A tool
call goes through three explicit steps: JSON decoding, strict schema
validation, then dispatch to exactly one handler. Every outcome, including
malformed arguments, becomes a ToolInvocation whose payload is folded back
into the conversation; nothing here raises into the completion loop.

This module is deliberately ignorant of prompts, chats, or streaming.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Set, Type

from pydantic import ValidationError

from errors import ToolArgumentError, ToolError
from models import ToolInvocation
from tools import (
    ANSWER_FROM_DOCUMENTS_DESCRIPTION,
    DRAFT_REPORT_DESCRIPTION,
    LIST_LAYER_NAMES_DESCRIPTION,
    AnswerFromDocumentsArgs,
    DraftReportArgs,
    GeoAssistantTools,
    ListLayerNamesArgs,
    RunAnalysisArgs,
    ToolArguments,
    TurnContext,
    run_analysis_description,
)

logger = logging.getLogger(__name__)

Handler = Callable[[Any, TurnContext], Awaitable[Any]]


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    argument_schema: Type[ToolArguments]
    handler: Handler

    def declaration(self) -> Dict[str, Any]:
        """OpenAI function-calling declaration."""
        parameters = self.argument_schema.model_json_schema()
        parameters.pop("title", None)
        return {
            "type": "function",
            "function": {"name": self.name, "description": self.description, "parameters": parameters},
        }


class ToolExecutor:
    """Validates and dispatches tool calls for one turn.

    Remembers which tools failed during the turn; a failed tool is not run
    again, the model is told to explain the failure instead.
    """

    def __init__(self, definitions: List[ToolDefinition]):
        self._tools: Dict[str, ToolDefinition] = {d.name: d for d in definitions}
        self._failed: Set[str] = set()

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def declarations(self) -> List[Dict[str, Any]]:
        return [d.declaration() for d in self._tools.values()]

    async def execute(self, call_id: str, name: str, raw_arguments: str, ctx: TurnContext) -> ToolInvocation:
        invocation = ToolInvocation(call_id=call_id, name=name, raw_arguments=raw_arguments or "")

        definition = self._tools.get(name)
        if definition is None:
            logger.warning("Model requested unknown tool %r", name)
            invocation.validation_error = ToolArgumentError(
                f"Unknown tool: {name}", {"available_tools": self.names}
            ).to_payload()
            return invocation

        try:
            payload = json.loads(raw_arguments) if raw_arguments else {}
        except json.JSONDecodeError as e:
            logger.warning("Malformed JSON in %s arguments: %s", name, e)
            invocation.validation_error = ToolArgumentError(f"Arguments for {name} are not valid JSON: {e.msg}").to_payload()
            return invocation

        try:
            args = definition.argument_schema.model_validate(payload)
        except ValidationError as e:
            logger.info("Rejected %s arguments: %d validation error(s)", name, e.error_count())
            invocation.validation_error = ToolArgumentError(
                f"Invalid arguments for {name}", {"errors": json.loads(e.json(include_url=False))}
            ).to_payload()
            return invocation
        invocation.arguments = args.model_dump(exclude_none=True)

        if name in self._failed:
            logger.info("Not re-running %s; it already failed this turn", name)
            invocation.error = {
                "error": f"The {name} tool already failed in this conversation turn and will not be run again. "
                "Explain the earlier failure to the user instead.",
                "code": "tool_already_failed",
            }
            return invocation

        t0 = time.perf_counter()
        try:
            invocation.result = await definition.handler(args, ctx)
        except ToolError as e:
            logger.info("Tool '%s' returned an error: %s", name, e.message)
            invocation.error = e.to_payload()
        except Exception as e:
            logger.exception("Tool '%s' failed: %s", name, e)
            invocation.error = {"error": f"The {name} tool failed unexpectedly.", "code": "tool_error"}
        finally:
            invocation.execution_time = round(time.perf_counter() - t0, 3)

        if invocation.error is not None:
            self._failed.add(name)
        return invocation


def build_tool_executor(tools: GeoAssistantTools, max_area: float) -> ToolExecutor:
    """The four tools, with the caller's area ceiling in the analysis description."""
    return ToolExecutor([
        ToolDefinition("run_analysis", run_analysis_description(max_area), RunAnalysisArgs, tools.run_analysis),
        ToolDefinition("answer_from_documents", ANSWER_FROM_DOCUMENTS_DESCRIPTION, AnswerFromDocumentsArgs, tools.answer_from_documents),
        ToolDefinition("draft_report", DRAFT_REPORT_DESCRIPTION, DraftReportArgs, tools.draft_report),
        ToolDefinition("list_layer_names", LIST_LAYER_NAMES_DESCRIPTION, ListLayerNamesArgs, tools.list_layer_names),
    ])
