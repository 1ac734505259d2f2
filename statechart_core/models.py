"""
Core data models for instrument state machine diagrams.

These models define the canonical schema for a project:
- One instrument (type + revision) per project
- Topics, each a small state machine of states and transitions
- System nodes marking mandated entry/exit points of a topic

Field Naming Convention:
- Python attributes are snake_case
- JSON serialization outputs camelCase (`isSystemNode`, `messageType`, ...)
- Transitions use `from`/`to` on the wire; both spellings are accepted on input
"""

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    model_validator,
)
from pydantic.alias_generators import to_camel


class TopicKind(str, Enum):
    """Whether a topic is the instrument's entry topic."""
    ROOT = "root"
    NORMAL = "normal"


class TransitionKind(str, Enum):
    """Structural role of a transition."""
    NORMAL = "normal"
    START_TOPIC = "startTopic"
    END_TOPIC = "endTopic"
    START_INSTRUMENT = "startInstrument"
    END_INSTRUMENT = "endInstrument"


class SystemNodeType(str, Enum):
    """Roles a system-mandated state can play."""
    TOPIC_START = "TopicStart"
    TOPIC_END = "TopicEnd"
    NEW_INSTRUMENT = "NewInstrument"
    INSTRUMENT_END = "InstrumentEnd"
    FORK = "Fork"


class TopicEndKind(str, Enum):
    """Outcome of a state marked as a topic end."""
    POSITIVE = "positive"
    NEGATIVE = "negative"


RESERVED_NAMES: tuple[str, ...] = (
    "Start", "End", "NewInstrument", "InstrumentEnd", "NewTopicIn", "NewTopicOut",
    "TopicStart", "TopicEnd",
)

# Java enum naming convention: starts with letter, only letters/numbers/underscores
JAVA_ENUM_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")

# Entry node per topic kind
ENTRY_NODE_TYPES = {
    TopicKind.ROOT: SystemNodeType.NEW_INSTRUMENT,
    TopicKind.NORMAL: SystemNodeType.TOPIC_START,
}


def is_valid_enum_name(value: str) -> bool:
    """Check a name against the Java enum convention."""
    return bool(JAVA_ENUM_PATTERN.match(value or ""))


def label_to_enum_id(label: str) -> str:
    """Convert a state label to the Java enum-style identifier used in PlantUML."""
    if not label or not label.strip():
        return "STATE"
    result = label.strip()
    result = re.sub(r"[^a-zA-Z0-9_\s]", "", result)  # Remove special chars
    result = re.sub(r"\s+", "_", result)             # Spaces to underscores
    result = re.sub(r"^(\d)", r"_\1", result)        # Prefix if starts with digit
    return result.upper() or "STATE"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_transition_id() -> str:
    """Generate a unique transition ID."""
    return f"t{uuid.uuid4().hex[:8]}"


class CamelModel(BaseModel):
    """Base model emitting camelCase JSON while accepting snake_case input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Position(CamelModel):
    """Canvas position of a state (layout only)."""
    x: float = 0
    y: float = 0


class Instrument(CamelModel):
    """The instrument a project models; type + revision is its natural key."""
    type: str = ""
    revision: str = ""
    label: Optional[str] = None
    description: Optional[str] = None


class Topic(CamelModel):
    """Identity of one topic (state machine) within a project."""
    id: str
    label: Optional[str] = None
    kind: TopicKind = TopicKind.NORMAL


class PlainState(CamelModel):
    """A user-created state."""
    id: str
    label: str = ""
    stereotype: Optional[str] = None
    position: Position = Field(default_factory=Position)
    is_system_node: Literal[False] = False
    # Present only when the state is marked as an accepted topic end
    topic_end_kind: Optional[TopicEndKind] = None

    @model_validator(mode="before")
    @classmethod
    def _null_end_marker_is_positive(cls, data: Any) -> Any:
        # In project JSON a present "topicEndKind" key marks the state, even when null
        if isinstance(data, dict) and "topicEndKind" in data and data["topicEndKind"] is None:
            data = {**data, "topicEndKind": TopicEndKind.POSITIVE.value}
        return data

    @property
    def system_node_type(self) -> None:
        return None


class SystemState(CamelModel):
    """A structurally mandated state (entry, end, fork)."""
    id: str
    label: str = ""
    stereotype: Optional[str] = None
    position: Position = Field(default_factory=Position)
    is_system_node: Literal[True] = True
    system_node_type: SystemNodeType

    @property
    def topic_end_kind(self) -> None:
        return None


def _state_tag(value: Any) -> str:
    """Pick the state variant from the isSystemNode flag."""
    if isinstance(value, dict):
        flag = value.get("isSystemNode", value.get("is_system_node", False))
    else:
        flag = getattr(value, "is_system_node", False)
    return "system" if flag else "plain"


State = Annotated[
    Union[
        Annotated[PlainState, Tag("plain")],
        Annotated[SystemState, Tag("system")],
    ],
    Discriminator(_state_tag),
]


class Transition(CamelModel):
    """A directed edge between two states of the same topic."""
    id: str = Field(default_factory=generate_transition_id)
    from_state: str = Field(alias="from")  # 'from' is reserved in Python
    to_state: str = Field(alias="to")
    kind: TransitionKind = TransitionKind.NORMAL
    is_routing_only: bool = False
    end_topic_kind: Optional[TopicEndKind] = None
    teleport_enabled: bool = False
    # Message properties
    revision: Optional[str] = None
    instrument: Optional[str] = None
    topic: Optional[str] = None
    message_type: Optional[str] = None
    flow_type: Optional[str] = None
    # Edge routing properties (persisted, not validated)
    source_handle_id: Optional[str] = None
    target_handle_id: Optional[str] = None
    curve_offset: Optional[float] = None


class TopicData(CamelModel):
    """One topic with its states and transitions."""
    topic: Topic
    states: list[State] = Field(default_factory=list)
    transitions: list[Transition] = Field(default_factory=list)

    @property
    def is_root(self) -> bool:
        return self.topic.kind == TopicKind.ROOT

    @property
    def entry_node_type(self) -> SystemNodeType:
        return ENTRY_NODE_TYPES[self.topic.kind]

    def get_state(self, state_id: str) -> Optional[Union[PlainState, SystemState]]:
        """Get a state by ID (O(n) - validation builds a TopicGraph instead)."""
        for state in self.states:
            if state.id == state_id:
                return state
        return None

    def get_transition(self, transition_id: str) -> Optional[Transition]:
        for transition in self.transitions:
            if transition.id == transition_id:
                return transition
        return None

    def find_system_node(self, node_type: SystemNodeType) -> Optional[SystemState]:
        for state in self.states:
            if state.system_node_type == node_type:
                return state
        return None


class DiagramProject(CamelModel):
    """
    The complete project structure.
    This is what gets saved to/loaded from JSON files.
    """
    id: str = Field(default_factory=lambda: f"project-{uuid.uuid4().hex[:8]}")
    name: str = "Untitled Instrument"
    instrument: Instrument = Field(default_factory=Instrument)
    topics: list[TopicData] = Field(default_factory=list)
    selected_topic_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def to_json_dict(self) -> dict:
        """Convert to JSON-serializable dict with camelCase field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_json_dict(cls, data: dict) -> "DiagramProject":
        """Create a project from a JSON dict (camelCase or snake_case keys)."""
        return cls.model_validate(data)

    def get_topic(self, topic_id: str) -> Optional[TopicData]:
        for topic_data in self.topics:
            if topic_data.topic.id == topic_id:
                return topic_data
        return None

    def touch(self):
        self.updated_at = _utcnow()


class FieldKey(str, Enum):
    """Controlled vocabularies of the field configuration."""
    REVISIONS = "revisions"
    INSTRUMENT_TYPES = "instrumentTypes"
    TOPIC_TYPES = "topicTypes"
    MESSAGE_TYPES = "messageTypes"
    FLOW_TYPES = "flowTypes"


class FieldConfig(CamelModel):
    """Vocabularies feeding instrument, topic and transition inputs."""
    revisions: list[str] = Field(default_factory=list)
    instrument_types: list[str] = Field(default_factory=list)
    topic_types: list[str] = Field(default_factory=list)
    message_types: list[str] = Field(default_factory=list)
    flow_types: list[str] = Field(default_factory=list)
    flow_type_colors: dict[str, str] = Field(default_factory=dict)

    def values(self, field: FieldKey) -> list[str]:
        """Get the vocabulary for a field key."""
        return getattr(self, _FIELD_ATTRS[field])


_FIELD_ATTRS = {
    FieldKey.REVISIONS: "revisions",
    FieldKey.INSTRUMENT_TYPES: "instrument_types",
    FieldKey.TOPIC_TYPES: "topic_types",
    FieldKey.MESSAGE_TYPES: "message_types",
    FieldKey.FLOW_TYPES: "flow_types",
}


# --- Helpers ---

AnyState = Union[PlainState, SystemState]


def derive_transition_kind(
    from_state: Optional[AnyState],
    to_state: Optional[AnyState]
) -> TransitionKind:
    """Derive a transition's kind from the states it connects."""
    if from_state is None or to_state is None:
        return TransitionKind.NORMAL

    if from_state.system_node_type == SystemNodeType.NEW_INSTRUMENT:
        return TransitionKind.START_INSTRUMENT
    if from_state.system_node_type == SystemNodeType.TOPIC_START:
        return TransitionKind.START_TOPIC
    if to_state.system_node_type == SystemNodeType.TOPIC_END:
        return TransitionKind.END_TOPIC
    if to_state.system_node_type == SystemNodeType.INSTRUMENT_END:
        return TransitionKind.END_INSTRUMENT

    return TransitionKind.NORMAL


def is_routing_only_transition(transition: Transition, to_state: Optional[AnyState] = None) -> bool:
    """Transitions into a Fork only route; they carry no message."""
    if to_state is not None:
        return to_state.system_node_type == SystemNodeType.FORK
    return transition.is_routing_only


def is_topic_end_state(state: Optional[AnyState]) -> bool:
    """A TopicEnd system node, or a plain state marked as a topic end."""
    if state is None:
        return False
    return state.system_node_type == SystemNodeType.TOPIC_END or state.topic_end_kind is not None


def is_fork(state: Optional[AnyState]) -> bool:
    return state is not None and state.system_node_type == SystemNodeType.FORK


def create_system_node(node_type: SystemNodeType, x: float = 100, y: float = 100) -> SystemState:
    """Create a system node with its conventional id, label and stereotype."""
    labels = {
        SystemNodeType.NEW_INSTRUMENT: ("New Instrument", "NewInstrument"),
        SystemNodeType.TOPIC_START: ("Topic Start", "Start"),
        SystemNodeType.TOPIC_END: ("Topic End", "End"),
        SystemNodeType.INSTRUMENT_END: ("Instrument End", "End"),
        SystemNodeType.FORK: ("Fork", "Fork"),
    }
    label, stereotype = labels[node_type]
    return SystemState(
        id=node_type.value,
        label=label,
        stereotype=stereotype,
        position=Position(x=x, y=y),
        system_node_type=node_type,
    )


def create_system_nodes(kind: TopicKind) -> list[AnyState]:
    """System nodes every new topic starts with."""
    return [
        create_system_node(ENTRY_NODE_TYPES[kind], 100, 100),
        create_system_node(SystemNodeType.TOPIC_END, 400, 300),
    ]
