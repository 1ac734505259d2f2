"""
Statechart Core - Shared models, validation, analysis, and PlantUML generation.

This package provides the core functionality used by both the backend API
and the CLI, ensuring a single source of truth for all diagram logic.
"""

from .models import (
    # Enums
    TopicKind,
    TransitionKind,
    SystemNodeType,
    TopicEndKind,
    FieldKey,
    # Core models
    Position,
    Instrument,
    Topic,
    PlainState,
    SystemState,
    State,
    AnyState,
    Transition,
    TopicData,
    DiagramProject,
    FieldConfig,
    # Helpers
    RESERVED_NAMES,
    is_valid_enum_name,
    label_to_enum_id,
    derive_transition_kind,
    create_system_node,
    create_system_nodes,
)

from .validation import (
    validate_project,
    has_blocking_errors,
    issues_for_topic,
    validation_summary,
    ValidationIssue,
    IssueLevel,
    DEFAULT_RULES,
)
from .analysis import TopicGraph, summarize_project
from .puml import generate_topic_puml, generate_aggregate_puml

__all__ = [
    # Enums
    "TopicKind",
    "TransitionKind",
    "SystemNodeType",
    "TopicEndKind",
    "FieldKey",
    # Models
    "Position",
    "Instrument",
    "Topic",
    "PlainState",
    "SystemState",
    "State",
    "AnyState",
    "Transition",
    "TopicData",
    "DiagramProject",
    "FieldConfig",
    # Helpers
    "RESERVED_NAMES",
    "is_valid_enum_name",
    "label_to_enum_id",
    "derive_transition_kind",
    "create_system_node",
    "create_system_nodes",
    # Validation
    "validate_project",
    "has_blocking_errors",
    "issues_for_topic",
    "validation_summary",
    "ValidationIssue",
    "IssueLevel",
    "DEFAULT_RULES",
    # Analysis
    "TopicGraph",
    "summarize_project",
    # PlantUML
    "generate_topic_puml",
    "generate_aggregate_puml",
]
