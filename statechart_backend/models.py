"""
API request models for the statechart backend.

Request bodies use snake_case field names; `from`/`to` are accepted for
transition endpoints as they appear in the project JSON.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from statechart_core.models import FieldConfig, FieldKey, TopicEndKind, TopicKind


class CreateProjectRequest(BaseModel):
    """Request to create a new instrument project."""
    type: str
    revision: str
    description: Optional[str] = None
    label: Optional[str] = None
    name: Optional[str] = None


class UpdateInstrumentRequest(BaseModel):
    """Request to update instrument fields (partial update)."""
    type: Optional[str] = None
    revision: Optional[str] = None
    label: Optional[str] = None
    description: Optional[str] = None


class RenameProjectRequest(BaseModel):
    name: str


class CreateTopicRequest(BaseModel):
    id: str
    kind: TopicKind = TopicKind.NORMAL
    label: Optional[str] = None


class UpdateTopicRequest(BaseModel):
    label: Optional[str] = None


class CreateStateRequest(BaseModel):
    """Request to add a user state; the label defaults to the id."""
    id: str
    label: Optional[str] = None
    x: float = 250
    y: float = 200


class UpdateStateRequest(BaseModel):
    """Request to update a user state (partial update)."""
    label: Optional[str] = None
    stereotype: Optional[str] = None
    x: Optional[float] = None
    y: Optional[float] = None


class MarkTopicEndRequest(BaseModel):
    end_kind: Optional[TopicEndKind] = None


class CreateTransitionRequest(BaseModel):
    """Request to connect two states."""
    model_config = ConfigDict(populate_by_name=True)

    from_state: str = Field(alias="from")
    to_state: str = Field(alias="to")
    message_type: Optional[str] = None
    flow_type: Optional[str] = None
    revision: Optional[str] = None
    instrument: Optional[str] = None
    topic: Optional[str] = None
    source_handle_id: Optional[str] = None
    target_handle_id: Optional[str] = None


class UpdateTransitionRequest(BaseModel):
    """Request to update a transition (partial update)."""
    model_config = ConfigDict(populate_by_name=True)

    from_state: Optional[str] = Field(default=None, alias="from")
    to_state: Optional[str] = Field(default=None, alias="to")
    message_type: Optional[str] = None
    flow_type: Optional[str] = None
    revision: Optional[str] = None
    instrument: Optional[str] = None
    topic: Optional[str] = None
    end_topic_kind: Optional[TopicEndKind] = None
    teleport_enabled: Optional[bool] = None
    source_handle_id: Optional[str] = None
    target_handle_id: Optional[str] = None
    curve_offset: Optional[float] = None


class FieldValueRequest(BaseModel):
    field: FieldKey
    value: str


class FlowTypeColorRequest(BaseModel):
    flow_type: str
    color: Optional[str] = None


class ReplaceFieldConfigRequest(BaseModel):
    config: FieldConfig


class ImportProjectRequest(BaseModel):
    json_text: str
