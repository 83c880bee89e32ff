"""
Pydantic models for the Geospatial Assistant chat service
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class MessageRole(str, Enum):
    """Message roles for conversation"""
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"


class ToolCall(BaseModel):
    """A tool call requested by the model (OpenAI wire shape)"""
    id: str
    type: str = "function"
    function: Dict[str, str]

    @property
    def name(self) -> str:
        return self.function.get("name", "")

    @property
    def arguments(self) -> str:
        return self.function.get("arguments", "")


class ChatMessage(BaseModel):
    """Individual chat message"""
    model_config = ConfigDict(use_enum_values=True)

    role: MessageRole
    content: str = ""
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    def to_llm(self) -> Dict[str, Any]:
        """Dict in the shape the completion API expects."""
        msg: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            msg["tool_calls"] = [tc.model_dump() for tc in self.tool_calls]
        if self.tool_call_id:
            msg["tool_call_id"] = self.tool_call_id
        if self.name:
            msg["name"] = self.name
        return msg


class ChatRequest(BaseModel):
    """Request model for the chat endpoint"""
    model_config = ConfigDict(populate_by_name=True)

    chat_id: str = Field(..., validation_alias=AliasChoices("id", "chatId", "chat_id"))
    messages: List[ChatMessage] = Field(..., min_length=1)
    selected_roi_geometry: Optional[Dict[str, Any]] = Field(
        None,
        validation_alias=AliasChoices("selectedRoiGeometryInChat", "selectedRegionGeometry", "selected_roi_geometry"),
    )
    map_layer_names: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("mapLayersNames", "existingLayerNames", "map_layer_names"),
    )

    def roi_geometry(self) -> Optional[Dict[str, Any]]:
        """The bare geometry, unwrapping a feature-like {"geometry": ...} wrapper."""
        roi = self.selected_roi_geometry
        if not roi:
            return None
        if "geometry" in roi:
            return roi.get("geometry")
        if "type" in roi:
            return roi
        return None


class PermissionSet(BaseModel):
    """Numeric limits resolved from role + tier"""
    max_requests: int
    max_area: float


class UserContext(BaseModel):
    """Per-request view of the caller. Read-only within a turn."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    role: str
    subscription_tier: str
    max_requests: int
    max_area: float
    usage_count: int = 0


class AnalysisRequest(BaseModel):
    """Payload forwarded to the geospatial analysis backend"""
    function_type: str
    start_date1: str
    end_date1: str
    start_date2: Optional[str] = None
    end_date2: Optional[str] = None
    aggregation_method: str
    layer_name: str
    selected_roi_geometry: Dict[str, Any]

    def to_backend_payload(self) -> Dict[str, Any]:
        return {
            "functionType": self.function_type,
            "startDate1": self.start_date1,
            "endDate1": self.end_date1,
            "startDate2": self.start_date2,
            "endDate2": self.end_date2,
            "aggregationMethod": self.aggregation_method,
            "selectedRoiGeometry": self.selected_roi_geometry,
        }


class ToolInvocation(BaseModel):
    """One model-requested tool call and its outcome"""
    call_id: str
    name: str
    raw_arguments: str = ""
    arguments: Optional[Dict[str, Any]] = None
    validation_error: Optional[Dict[str, Any]] = None
    result: Optional[Any] = None
    error: Optional[Dict[str, Any]] = None
    execution_time: Optional[float] = None

    @property
    def success(self) -> bool:
        return self.error is None and self.validation_error is None

    def result_payload(self) -> Any:
        """What gets folded back into the conversation as the tool message."""
        if self.validation_error is not None:
            return self.validation_error
        if self.error is not None:
            return self.error
        return self.result


class Chat(BaseModel):
    id: str
    title: str
    user_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)


class StoredMessage(BaseModel):
    """Message as written to chat storage"""
    model_config = ConfigDict(use_enum_values=True)

    id: str
    chat_id: str
    role: MessageRole
    content: str = ""
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    draft_report_id: Optional[str] = None
    created_at: datetime
