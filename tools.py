"""
Geospatial Assistant Tools - analysis requests, document answers, report drafting
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from config import config
from engine import LLMEngine
from errors import RemoteServiceFailure, ToolError, format_sq_km
from geometry import validate as validate_geometry
from models import AnalysisRequest, MessageRole, UserContext
from prompts import formatted_date, get_report_prompt
from remote_services import AnalysisBackendClient, RetrievalClient

logger = logging.getLogger(__name__)

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
SYSTEM_PROMPT_MARKER = "You are an AI Assistant"

NO_ROI_MESSAGE = (
    "It seems you didn't provide a valid region of interest (ROI) for the analysis. "
    "You need to provide an ROI through importing a shapefile/geojson file or drawing a shape on the map."
)

_DATE_HELP = "The date format should be 'YYYY-MM-DD'. But convert any other date format the user gives you to that one."
_TITLE_HELP = "Briefly describe the title of the analysis in one sentence confirming you're working on the user's request."


class ToolArguments(BaseModel):
    """Strict argument schema: no coercion, no unknown keys."""
    model_config = ConfigDict(strict=True, extra="forbid")


class RunAnalysisArgs(ToolArguments):
    function_type: str = Field(..., description=(
        "The type of analysis to execute. It can be one of the following: "
        "'Urban Heat Island (UHI) Analysis', 'Land Use/Land Cover Maps', 'Land Use/Land Cover Change Maps'."
    ))
    start_date1: str = Field(..., pattern=DATE_PATTERN, description=f"The start date for the first period. {_DATE_HELP}")
    end_date1: str = Field(..., pattern=DATE_PATTERN, description=f"The end date for the first period. {_DATE_HELP}")
    start_date2: Optional[str] = Field(None, pattern=DATE_PATTERN, description=f"The start date for the second period. {_DATE_HELP}")
    end_date2: Optional[str] = Field(None, pattern=DATE_PATTERN, description=f"The end date for the second period. {_DATE_HELP}")
    aggregation_method: str = Field(..., description=(
        "The method to use for aggregating the data: in a time-series, what method is used to aggregate data "
        "for a given pixel in the final map. For land use/land cover mapping it's always 'Median', so you don't "
        "need to ask the user. It can be one of 'Mean', 'Median', 'Min', 'Max'. The user may not provide it; "
        "by default use 'Max' without asking, and mention in the response that the analysis is based on the maximum value."
    ))
    layer_name: str = Field(..., description=(
        "The name of the layer to be displayed. Ask the user if they don't provide it. Otherwise, use a concise, "
        "descriptive name based on the function type."
    ))
    title: Optional[str] = Field(None, description=_TITLE_HELP)


class AnswerFromDocumentsArgs(ToolArguments):
    query: str = Field(..., min_length=1, description="The user's query text.")
    title: Optional[str] = Field(None, description=_TITLE_HELP)


class DraftReportArgs(ToolArguments):
    messages: List[Dict[str, Any]] = Field(..., description=(
        "The messages exchanged between the user and you. Use the relevant messages in the chat to generate "
        "the report the user requested, formatted in a standard way with all the common structures."
    ))
    title: Optional[str] = Field(None, description=(
        "Briefly describe the title of the report to be drafted in one sentence confirming you're working on the user's request."
    ))
    report_file_name: Optional[str] = Field(None, description="Provide a concise name for the report file.")


class ListLayerNamesArgs(ToolArguments):
    layer_name: str = Field(..., description="The name of the layer to be displayed.")


def run_analysis_description(max_area: float) -> str:
    return (
        f"Today is {formatted_date()}, so you should be able to help the user with requests by up to this date. "
        "No analysis should be done for the year of 2025 as analyses are not yet ready for the new year. "
        "After running an analysis: 1. Provide a clear summary of what was analyzed and why, 2. Explain the key "
        "findings and their significance. NEVER PROVIDE MAP URLs or MAP LEGENDS FROM THE ANALYSES IN THE RESPONSE. "
        f"The maximum area the user can request analysis for is {format_sq_km(max_area)} sq km. per request. "
        "The land cover map (start date: 2015) and bi-temporal land cover change map (start date: 2015) are based on "
        "Sentinel-2 imagery, UHI (start date: 2015) is based on Landsat imagery. For all \"CHANGE\" maps, the user "
        "must provide start_date2 and end_date2. If in doubt about an analysis (e.g., it may not exactly match the "
        "analysis we have), double check with the user."
    )


ANSWER_FROM_DOCUMENTS_DESCRIPTION = (
    "The user has some documents from which a retrieval index has been built. If you're asked a question you "
    "don't know the answer to, run this tool to get the answer from the user's documents."
)

DRAFT_REPORT_DESCRIPTION = (
    "When this tool is called, a report is drafted that summarizes the analyses and their results. The report "
    "should be concise and easy to understand, highlighting the key findings and insights. Markdown is supported."
)

LIST_LAYER_NAMES_DESCRIPTION = (
    "You need to select a name for the geospatial analysis to be performed. This returns the names of the current "
    "map layers. Before running a geospatial analysis, check the layer names to make sure the name you selected "
    "is not already in use."
)


@dataclass
class TurnContext:
    """Everything a handler may read about the current turn."""
    chat_id: str
    user: UserContext
    roi_geometry: Optional[Dict[str, Any]] = None
    selected_roi: Optional[Dict[str, Any]] = None
    map_layer_names: List[str] = field(default_factory=list)
    history: List[Dict[str, Any]] = field(default_factory=list)
    forward_headers: Dict[str, str] = field(default_factory=dict)


class GeoAssistantTools:
    """Handlers behind the tools the model may call"""

    def __init__(self, analysis_client: AnalysisBackendClient, retrieval_client: RetrievalClient, report_engine: LLMEngine):
        self.analysis_client = analysis_client
        self.retrieval_client = retrieval_client
        self.report_engine = report_engine

    async def run_analysis(self, args: RunAnalysisArgs, ctx: TurnContext) -> Dict[str, Any]:
        """Validate the ROI, then forward the request to the analysis backend.

        The backend payload is echoed back with the request parameters so the
        model can refer to the exact dates and layer already agreed with the user.
        """
        if not ctx.roi_geometry:
            raise ToolError(NO_ROI_MESSAGE)

        area_sq_km = validate_geometry(ctx.roi_geometry, ctx.user.max_area)
        logger.info("ROI accepted for %s: %.2f sq km (limit %s)", args.function_type, area_sq_km, ctx.user.max_area)

        request = AnalysisRequest(
            function_type=args.function_type,
            start_date1=args.start_date1,
            end_date1=args.end_date1,
            start_date2=args.start_date2,
            end_date2=args.end_date2,
            aggregation_method=args.aggregation_method,
            layer_name=args.layer_name,
            selected_roi_geometry=ctx.roi_geometry,
        )
        data = await self.analysis_client.request_analysis(request, ctx.forward_headers)
        return {
            **data,
            "title": args.title,
            "layer_name": args.layer_name,
            "function_type": args.function_type,
            "start_date1": args.start_date1,
            "end_date1": args.end_date1,
            "start_date2": args.start_date2,
            "end_date2": args.end_date2,
            "aggregation_method": args.aggregation_method,
            "area_sq_km": round(area_sq_km, 2),
            "selected_roi_geometry": ctx.selected_roi or ctx.roi_geometry,
        }

    async def answer_from_documents(self, args: AnswerFromDocumentsArgs, ctx: TurnContext) -> Dict[str, Any]:
        data = await self.retrieval_client.answer(args.query)
        return {"data": data, "title": args.title}

    async def draft_report(self, args: DraftReportArgs, ctx: TurnContext) -> Dict[str, Any]:
        """Secondary, tool-free completion over the conversation so far."""
        relevant = [
            {"role": m["role"], "content": m["content"]}
            for m in ctx.history
            if m.get("role") == MessageRole.USER
            or (
                m.get("role") == MessageRole.ASSISTANT
                and m.get("content")
                and not m["content"].startswith(SYSTEM_PROMPT_MARKER)
            )
        ]
        conversation = relevant + [{"role": "user", "content": get_report_prompt()}]
        try:
            report = await self.report_engine.complete_text(conversation, config.MAX_TOKENS_PER_REQUEST)
        except Exception as e:
            logger.exception("Error generating report: %s", e)
            raise RemoteServiceFailure("Failed to draft report") from e
        return {"report": report, "title": args.title, "report_file_name": args.report_file_name}

    async def list_layer_names(self, args: ListLayerNamesArgs, ctx: TurnContext) -> List[str]:
        return ctx.map_layer_names
