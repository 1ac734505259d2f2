"""
Project validation - Check instrument diagrams for structural issues.

Validation is a pure function of a project snapshot: every rule in
DEFAULT_RULES runs once, and their issues are concatenated in rule order
(topic-scoped rules walk topics in project order). Problems are reported
as data, never raised, so the engine is safe to call on every edit.
"""

import functools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional, Sequence

from .analysis import TopicGraph
from .models import (
    RESERVED_NAMES,
    DiagramProject,
    FieldConfig,
    SystemNodeType,
    TopicData,
    TransitionKind,
    is_fork,
    is_routing_only_transition,
    is_topic_end_state,
    is_valid_enum_name,
    label_to_enum_id,
)

logger = logging.getLogger(__name__)


class IssueLevel(str, Enum):
    """Severity levels for validation issues."""
    ERROR = "error"      # Blocks save/publish
    WARNING = "warning"  # Advisory, should review


@dataclass(frozen=True)
class ValidationIssue:
    """A single validation issue found in a project."""
    level: IssueLevel
    message: str
    topic_id: Optional[str] = None
    state_id: Optional[str] = None
    transition_id: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        result = {
            "level": self.level.value,
            "message": self.message
        }
        if self.topic_id is not None:
            result["topicId"] = self.topic_id
        if self.state_id is not None:
            result["stateId"] = self.state_id
        if self.transition_id is not None:
            result["transitionId"] = self.transition_id
        return result


@dataclass
class ValidationContext:
    """Everything a rule may read during one validation pass."""
    project: DiagramProject
    field_config: FieldConfig = field(default_factory=FieldConfig)
    _graphs: dict[int, TopicGraph] = field(default_factory=dict, repr=False)

    def graph(self, topic_data: TopicData) -> TopicGraph:
        """Adjacency view of a topic, built at most once per pass."""
        key = id(topic_data)
        if key not in self._graphs:
            self._graphs[key] = TopicGraph.build(topic_data)
        return self._graphs[key]


Rule = Callable[[ValidationContext], list[ValidationIssue]]
TopicCheck = Callable[[TopicData, TopicGraph, ValidationContext], Iterable[ValidationIssue]]


def topic_rule(check: TopicCheck) -> Rule:
    """Lift a per-topic check into a rule over every topic of the project."""
    @functools.wraps(check)
    def rule(ctx: ValidationContext) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for topic_data in ctx.project.topics:
            issues.extend(check(topic_data, ctx.graph(topic_data), ctx))
        return issues
    return rule


def _error(message: str, **location) -> ValidationIssue:
    return ValidationIssue(level=IssueLevel.ERROR, message=message, **location)


def _warning(message: str, **location) -> ValidationIssue:
    return ValidationIssue(level=IssueLevel.WARNING, message=message, **location)


def _is_blank(value: Optional[str]) -> bool:
    return not value or value.strip() == ""


# --- Project rules ---

def check_instrument_type(ctx: ValidationContext) -> list[ValidationIssue]:
    instrument_type = ctx.project.instrument.type
    if _is_blank(instrument_type):
        return [_error("Instrument type is required")]
    if not is_valid_enum_name(instrument_type):
        return [_error(
            f'Instrument type "{instrument_type}" must follow Java enum naming '
            f'(letters, numbers, underscores only)'
        )]
    configured = ctx.field_config.instrument_types
    if configured and instrument_type not in configured:
        return [_warning(f'Instrument type "{instrument_type}" is not in configured instrument types')]
    return []


def check_instrument_revision(ctx: ValidationContext) -> list[ValidationIssue]:
    revision = ctx.project.instrument.revision
    if _is_blank(revision):
        return [_error("Instrument revision is required")]
    if not is_valid_enum_name(revision):
        return [_error(f'Instrument revision "{revision}" must follow Java enum naming')]
    configured = ctx.field_config.revisions
    if configured and revision not in configured:
        return [_warning(f'Instrument revision "{revision}" is not in configured revisions')]
    return []


def check_root_topic(ctx: ValidationContext) -> list[ValidationIssue]:
    topics = ctx.project.topics
    if topics and not any(t.is_root for t in topics):
        return [_warning(
            "No root topic defined. One topic should be marked as root "
            "for instrument aggregate diagram."
        )]
    return []


# --- Topic rules ---

@topic_rule
def check_topic_id(topic_data: TopicData, graph: TopicGraph, ctx: ValidationContext):
    topic_id = topic_data.topic.id
    if _is_blank(topic_id):
        yield _error("Topic ID is required", topic_id=topic_id)
    elif not is_valid_enum_name(topic_id):
        yield _error(
            f'Topic ID "{topic_id}" must follow Java enum naming (letters, numbers, underscores only)',
            topic_id=topic_id
        )
    elif topic_id in RESERVED_NAMES:
        yield _error(f'Topic ID "{topic_id}" is a reserved name', topic_id=topic_id)
    elif ctx.field_config.topic_types and topic_id not in ctx.field_config.topic_types:
        yield _warning(f'Topic ID "{topic_id}" is not in configured topic types', topic_id=topic_id)


@topic_rule
def check_state_labels(topic_data: TopicData, graph: TopicGraph, ctx: ValidationContext):
    """State labels become PlantUML identifiers, so they must convert cleanly."""
    topic_id = topic_data.topic.id
    for state in topic_data.states:
        if state.is_system_node:
            continue
        if _is_blank(state.label):
            yield _error("State label is required", topic_id=topic_id, state_id=state.id)
            continue
        puml_id = label_to_enum_id(state.label)
        if not is_valid_enum_name(puml_id):
            yield _warning(
                f'State label "{state.label}" converts to invalid PUML ID "{puml_id}"',
                topic_id=topic_id, state_id=state.id
            )
        elif puml_id in RESERVED_NAMES:
            yield _error(
                f'State label "{state.label}" converts to reserved name "{puml_id}"',
                topic_id=topic_id, state_id=state.id
            )


@topic_rule
def check_entry_state(topic_data: TopicData, graph: TopicGraph, ctx: ValidationContext):
    if topic_data.is_root and not graph.entry_ids:
        topic_id = topic_data.topic.id
        yield _error(
            f'Topic "{topic_id}" is missing its {SystemNodeType.NEW_INSTRUMENT.value} entry state',
            topic_id=topic_id
        )


def _leads_past_fork(graph: TopicGraph, transition) -> bool:
    """A start transition counts if it reaches a non-Fork state, directly or via one Fork."""
    if not is_fork(graph.state(transition.to_state)):
        return True
    return any(
        not is_fork(graph.state(onward.to_state))
        for onward in graph.outgoing.get(transition.to_state, [])
    )


@topic_rule
def check_start_transition(topic_data: TopicData, graph: TopicGraph, ctx: ValidationContext):
    entry_type = topic_data.entry_node_type
    entry_ids = graph.entry_ids
    if not entry_ids:
        if topic_data.is_root:
            return  # reported by check_entry_state
        entry_ids = [entry_type.value]

    has_start = any(
        _leads_past_fork(graph, transition)
        for entry_id in entry_ids
        for transition in graph.outgoing.get(entry_id, [])
    )
    if not has_start:
        topic_id = topic_data.topic.id
        yield _error(
            f'Topic "{topic_id}" must have at least one transition from {entry_type.value}',
            topic_id=topic_id
        )


@topic_rule
def check_transition_endpoints(topic_data: TopicData, graph: TopicGraph, ctx: ValidationContext):
    topic_id = topic_data.topic.id
    for transition in topic_data.transitions:
        if not graph.has_state(transition.from_state):
            yield _error(
                f'Transition "{transition.id}" has invalid source state "{transition.from_state}"',
                topic_id=topic_id, transition_id=transition.id
            )
        if not graph.has_state(transition.to_state):
            yield _error(
                f'Transition "{transition.id}" has invalid target state "{transition.to_state}"',
                topic_id=topic_id, transition_id=transition.id
            )


@topic_rule
def check_transition_kinds(topic_data: TopicData, graph: TopicGraph, ctx: ValidationContext):
    topic_id = topic_data.topic.id
    for transition in topic_data.transitions:
        from_state = graph.state(transition.from_state)
        from_type = from_state.system_node_type if from_state else None

        if transition.kind == TransitionKind.START_TOPIC and from_type != SystemNodeType.TOPIC_START:
            yield _error(
                "startTopic transition must originate from TopicStart",
                topic_id=topic_id, transition_id=transition.id
            )
        if transition.kind == TransitionKind.START_INSTRUMENT and from_type != SystemNodeType.NEW_INSTRUMENT:
            yield _error(
                "startInstrument transition must originate from NewInstrument",
                topic_id=topic_id, transition_id=transition.id
            )
        if transition.kind == TransitionKind.END_TOPIC and not is_topic_end_state(graph.state(transition.to_state)):
            yield _error(
                "endTopic transition must end at a TopicEnd or marked end-topic state",
                topic_id=topic_id, transition_id=transition.id
            )


# (attribute, wire name, vocabulary attribute, vocabulary description)
_OPTIONAL_TRANSITION_FIELDS = (
    ("revision", "revision", "revisions", "revisions"),
    ("instrument", "instrument", "instrument_types", "instrument types"),
    ("topic", "topic", "topic_types", "topic types"),
)
_REQUIRED_TRANSITION_FIELDS = (
    ("message_type", "messageType", "message_types", "message types"),
    ("flow_type", "flowType", "flow_types", "flow types"),
)


def _check_vocabulary_value(value, wire_name, configured, description, **location):
    if not is_valid_enum_name(value):
        return _warning(f'Transition {wire_name} "{value}" must follow Java enum naming', **location)
    if configured and value not in configured:
        return _warning(f'Transition {wire_name} "{value}" is not in configured {description}', **location)
    return None


@topic_rule
def check_transition_fields(topic_data: TopicData, graph: TopicGraph, ctx: ValidationContext):
    """Message metadata: messageType/flowType required, all values enum-named and configured."""
    topic_id = topic_data.topic.id
    for transition in topic_data.transitions:
        if transition.kind in (TransitionKind.END_TOPIC, TransitionKind.END_INSTRUMENT):
            continue

        location = {"topic_id": topic_id, "transition_id": transition.id}
        routing_only = is_routing_only_transition(transition, graph.state(transition.to_state))

        for attr, wire_name, vocabulary, description in _OPTIONAL_TRANSITION_FIELDS:
            value = getattr(transition, attr)
            if value:
                configured = getattr(ctx.field_config, vocabulary)
                issue = _check_vocabulary_value(value, wire_name, configured, description, **location)
                if issue:
                    yield issue

        for attr, wire_name, vocabulary, description in _REQUIRED_TRANSITION_FIELDS:
            value = getattr(transition, attr)
            if _is_blank(value):
                if not routing_only:
                    yield _error(f"Transition {wire_name} is required", **location)
                continue
            configured = getattr(ctx.field_config, vocabulary)
            issue = _check_vocabulary_value(value, wire_name, configured, description, **location)
            if issue:
                yield issue


@topic_rule
def check_missing_end_paths(topic_data: TopicData, graph: TopicGraph, ctx: ValidationContext):
    """Warn about each state reachable from an entry that has nowhere to go."""
    topic_id = topic_data.topic.id
    for state_id in graph.dead_ends():
        state = graph.state(state_id)
        yield _warning(
            f'State "{state.label or state.id}" has no outgoing transitions and is not marked as an end state',
            topic_id=topic_id, state_id=state_id
        )


@topic_rule
def check_forks(topic_data: TopicData, graph: TopicGraph, ctx: ValidationContext):
    topic_id = topic_data.topic.id
    for state in topic_data.states:
        if not is_fork(state):
            continue
        if graph.in_degree(state.id) == 0:
            yield _warning(
                f'Fork "{state.label}" has no incoming transitions (no effective expansion)',
                topic_id=topic_id, state_id=state.id
            )
        if graph.out_degree(state.id) == 0:
            yield _warning(
                f'Fork "{state.label}" has no outgoing transitions (no effective expansion)',
                topic_id=topic_id, state_id=state.id
            )


@topic_rule
def check_orphan_states(topic_data: TopicData, graph: TopicGraph, ctx: ValidationContext):
    topic_id = topic_data.topic.id
    for state in topic_data.states:
        if state.is_system_node:
            continue
        if graph.in_degree(state.id) == 0 and graph.out_degree(state.id) == 0:
            yield _warning(
                f'State "{state.label}" is orphaned (no connections)',
                topic_id=topic_id, state_id=state.id
            )


@topic_rule
def check_unreachable_states(topic_data: TopicData, graph: TopicGraph, ctx: ValidationContext):
    topic_id = topic_data.topic.id
    reachable = set(graph.reachable_from(graph.entry_ids))
    for state in topic_data.states:
        if not state.is_system_node and state.id not in reachable:
            yield _warning(
                f'State "{state.label}" is unreachable from start',
                topic_id=topic_id, state_id=state.id
            )


DEFAULT_RULES: tuple[Rule, ...] = (
    check_instrument_type,
    check_instrument_revision,
    check_root_topic,
    check_topic_id,
    check_state_labels,
    check_entry_state,
    check_start_transition,
    check_transition_endpoints,
    check_transition_kinds,
    check_transition_fields,
    check_missing_end_paths,
    check_forks,
    check_orphan_states,
    check_unreachable_states,
)


def validate_project(
    project: DiagramProject,
    field_config: Optional[FieldConfig] = None,
    rules: Sequence[Rule] = DEFAULT_RULES
) -> list[ValidationIssue]:
    """
    Validate a project and return its issues.

    Args:
        project: The project snapshot to inspect (never mutated)
        field_config: Configured vocabularies; empty lists disable membership checks
        rules: Rules to run, in output order

    Returns:
        List of ValidationIssue objects, ordered by rule then topic
    """
    ctx = ValidationContext(project=project, field_config=field_config or FieldConfig())
    issues: list[ValidationIssue] = []

    for rule in rules:
        name = getattr(rule, "__name__", repr(rule))
        try:
            issues.extend(rule(ctx))
        except Exception as e:
            logger.exception("Validation rule %s failed", name)
            issues.append(_error(f'Rule "{name}" failed: {e}'))

    logger.debug("Validated project %s: %d issues", project.id, len(issues))
    return issues


def has_blocking_errors(issues: Iterable[ValidationIssue]) -> bool:
    """True if at least one issue is error-level."""
    return any(issue.level == IssueLevel.ERROR for issue in issues)


def issues_for_topic(issues: Iterable[ValidationIssue], topic_id: str) -> list[ValidationIssue]:
    """Issues localized to one topic (project-level issues are excluded)."""
    return [issue for issue in issues if issue.topic_id == topic_id]


def validation_summary(issues: list[ValidationIssue]) -> dict:
    """
    Create a summary of validation issues.

    Args:
        issues: List of validation issues

    Returns:
        Dictionary with counts by level
    """
    errors = len([i for i in issues if i.level == IssueLevel.ERROR])
    return {
        "total": len(issues),
        "errors": errors,
        "warnings": len([i for i in issues if i.level == IssueLevel.WARNING]),
        "valid": errors == 0
    }
