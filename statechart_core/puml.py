"""
PlantUML generation - Serialize projects to diagram source text.

Produces one diagram per topic and an aggregate diagram nesting every
topic inside its instrument. Fork states never appear in the output:
each incoming/outgoing pair around a Fork becomes one direct transition.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from .models import (
    AnyState,
    DiagramProject,
    Instrument,
    SystemNodeType,
    Topic,
    TopicData,
    TopicEndKind,
    TopicKind,
    Transition,
    TransitionKind,
    is_routing_only_transition,
    is_topic_end_state,
    label_to_enum_id,
)

INLINE_STYLES = """skinparam state {
  BackgroundColor #F8FAFC
  BorderColor #CBD5E1
  FontColor #0F172A
  ArrowColor #64748B
}

skinparam state<<start>> {
  BackgroundColor #22C55E
  BorderColor #16A34A
  FontColor #FFFFFF
}

skinparam state<<end>> {
  BackgroundColor #EF4444
  BorderColor #DC2626
  FontColor #FFFFFF
}

skinparam state<<entryPoint>> {
  BackgroundColor #3B82F6
  BorderColor #2563EB
  FontColor #FFFFFF
}

skinparam state<<exitPoint>> {
  BackgroundColor #F59E0B
  BorderColor #D97706
  FontColor #FFFFFF
}

hide empty description"""

NEW_INSTRUMENT_ALIAS = "NewInstrument"
END_INSTRUMENT_ALIAS = "EndInstrument"


@dataclass(frozen=True)
class RenderTransition:
    """A transition as drawn, after Fork expansion."""
    from_state: str
    to_state: str
    label: str


def escape_label(label: str) -> str:
    return label.replace('"', '\\"')


def state_enum_id(state: AnyState) -> str:
    """System nodes keep their fixed IDs; user states derive one from the label."""
    if state.is_system_node:
        return state.id
    return label_to_enum_id(state.label)


def _marked_end_kind(state: AnyState) -> Optional[TopicEndKind]:
    if state.is_system_node:
        return None
    return state.topic_end_kind


def transition_label(
    transition: Transition,
    instrument: Instrument,
    topic: Topic,
    to_state: Optional[AnyState] = None
) -> str:
    """
    Label a transition.

    All fields to the right of the left-most filled optional field must be
    filled too: a revision pulls in instrument and topic (inherited from the
    project when unset), an instrument pulls in topic.
    """
    if (
        transition.kind in (TransitionKind.END_TOPIC, TransitionKind.END_INSTRUMENT)
        or is_routing_only_transition(transition, to_state)
        or not transition.message_type
        or not transition.flow_type
    ):
        return ""

    parts: list[str] = []
    if transition.revision:
        parts.append(transition.revision)
        parts.append(transition.instrument or instrument.type)
        parts.append(transition.topic or topic.id)
    elif transition.instrument:
        parts.append(transition.instrument)
        parts.append(transition.topic or topic.id)
    elif transition.topic:
        parts.append(transition.topic)

    parts.append(transition.message_type)
    parts.append(transition.flow_type)
    return " ".join(parts)


def expand_fork_transitions(
    topic_data: TopicData,
    get_label: Callable[[Transition, Optional[AnyState]], str]
) -> list[RenderTransition]:
    """Replace Fork states by direct transitions, deduplicated by (from, to, label)."""
    states_by_id = {s.id: s for s in topic_data.states}
    fork_ids = [s.id for s in topic_data.states if s.system_node_type == SystemNodeType.FORK]
    fork_set = set(fork_ids)

    expanded: list[RenderTransition] = []
    seen: set[RenderTransition] = set()

    def add(from_state: str, to_state: str, label: str):
        if from_state in fork_set or to_state in fork_set:
            return
        item = RenderTransition(from_state, to_state, label)
        if item in seen:
            return
        seen.add(item)
        expanded.append(item)

    for transition in topic_data.transitions:
        if transition.from_state in fork_set or transition.to_state in fork_set:
            continue
        to_state = states_by_id.get(transition.to_state)
        add(transition.from_state, transition.to_state, get_label(transition, to_state))

    for fork_id in fork_ids:
        incoming = [t for t in topic_data.transitions if t.to_state == fork_id]
        outgoing = [t for t in topic_data.transitions if t.from_state == fork_id]
        for incoming_transition in incoming:
            for outgoing_transition in outgoing:
                to_state = states_by_id.get(outgoing_transition.to_state)
                add(
                    incoming_transition.from_state,
                    outgoing_transition.to_state,
                    get_label(outgoing_transition, to_state)
                )

    return expanded


def topic_render_transitions(topic_data: TopicData, instrument: Instrument) -> list[RenderTransition]:
    return expand_fork_transitions(
        topic_data,
        lambda transition, to_state: transition_label(transition, instrument, topic_data.topic, to_state)
    )


def _arrow(from_alias: str, to_alias: str, label: str, indent: str = "") -> str:
    if label:
        return f"{indent}{from_alias} --> {to_alias} : {label}"
    return f"{indent}{from_alias} --> {to_alias}"


def _state_alias(state: Optional[AnyState], raw_id: str, prefix: str) -> str:
    """Alias of a state inside the topic identified by `prefix`."""
    if state is None:
        return f"{prefix}.{raw_id}"
    if state.system_node_type == SystemNodeType.NEW_INSTRUMENT:
        return NEW_INSTRUMENT_ALIAS
    if state.system_node_type == SystemNodeType.INSTRUMENT_END:
        return END_INSTRUMENT_ALIAS
    if state.system_node_type == SystemNodeType.TOPIC_START:
        return f"{prefix}.Start"
    if state.system_node_type == SystemNodeType.TOPIC_END:
        return f"{prefix}.End"
    return f"{prefix}.{state_enum_id(state)}"


def _topic_state_lines(topic_data: TopicData, prefix: str, indent: str) -> list[str]:
    """Declarations for states living inside the topic container."""
    lines = []
    for state in topic_data.states:
        node_type = state.system_node_type
        if node_type in (SystemNodeType.NEW_INSTRUMENT, SystemNodeType.INSTRUMENT_END, SystemNodeType.FORK):
            continue  # declared at top level, or expanded away
        if node_type == SystemNodeType.TOPIC_START:
            lines.append(f'{indent}state {prefix}.Start as "Topic Start" <<entryPoint>>')
        elif node_type == SystemNodeType.TOPIC_END:
            lines.append(f'{indent}state {prefix}.End as "Topic End" <<exitPoint>>')
        else:
            enum_id = state_enum_id(state)
            stereotype = state.stereotype or enum_id
            lines.append(f'{indent}state "{escape_label(state.label)}" as {prefix}.{enum_id} <<{stereotype}>>')
    return lines


def _split_marked_ends(topic_data: TopicData) -> tuple[list[AnyState], list[AnyState]]:
    """Marked topic ends as (positive, negative); negative only counts in root topics."""
    marked = [s for s in topic_data.states if _marked_end_kind(s) is not None]
    if topic_data.topic.kind != TopicKind.ROOT:
        return marked, []
    positive = [s for s in marked if _marked_end_kind(s) != TopicEndKind.NEGATIVE]
    negative = [s for s in marked if _marked_end_kind(s) == TopicEndKind.NEGATIVE]
    return positive, negative


def _has_system_node(topic_data: TopicData, node_type: SystemNodeType) -> bool:
    return any(s.system_node_type == node_type for s in topic_data.states)


def generate_topic_puml(project: DiagramProject, topic_id: str) -> Optional[str]:
    """
    Generate the PlantUML source for a single topic.

    Args:
        project: Project holding the topic
        topic_id: ID of the topic to render

    Returns:
        PlantUML text, or None if the topic does not exist
    """
    topic_data = project.get_topic(topic_id)
    if topic_data is None:
        return None

    instrument = project.instrument
    topic = topic_data.topic
    prefix = f"{instrument.type}.{topic.id}"
    states_by_id = {s.id: s for s in topic_data.states}
    positive_ends, negative_ends = _split_marked_ends(topic_data)
    has_topic_end_node = _has_system_node(topic_data, SystemNodeType.TOPIC_END)
    has_new_instrument = _has_system_node(topic_data, SystemNodeType.NEW_INSTRUMENT)
    has_instrument_end = _has_system_node(topic_data, SystemNodeType.INSTRUMENT_END) or bool(negative_ends)

    lines = [
        "@startuml",
        "",
        f"' Topic: {topic.label or topic.id}",
        f"' Instrument: {instrument.label or instrument.type}",
        "",
        INLINE_STYLES,
        "",
        "' --- States ---",
    ]

    if has_new_instrument:
        lines.append(f"state {NEW_INSTRUMENT_ALIAS} <<start>>")
    if has_instrument_end:
        lines.append(f"state {END_INSTRUMENT_ALIAS} <<end>>")
    if has_new_instrument or has_instrument_end:
        lines.append("")

    lines.extend(_topic_state_lines(topic_data, prefix, ""))
    if not has_topic_end_node and positive_ends:
        lines.append(f'state {prefix}.End as "Topic End" <<exitPoint>>')
    lines.append("")

    lines.append("' --- Transitions ---")
    for transition in topic_render_transitions(topic_data, instrument):
        from_alias = _state_alias(states_by_id.get(transition.from_state), transition.from_state, prefix)
        to_alias = _state_alias(states_by_id.get(transition.to_state), transition.to_state, prefix)
        lines.append(_arrow(from_alias, to_alias, transition.label))
    for state in positive_ends:
        lines.append(f"{prefix}.{state_enum_id(state)} --> {prefix}.End")
    for state in negative_ends:
        lines.append(f"{prefix}.{state_enum_id(state)} --> {END_INSTRUMENT_ALIAS}")
    lines.append("")

    lines.append("@enduml")
    return "\n".join(lines)


def generate_aggregate_puml(project: DiagramProject) -> Optional[str]:
    """
    Generate one diagram for the whole instrument.

    Root topics hang off NewInstrument; normal topics are entered through a
    "New Topic" router fed by the root topics' positive ends.

    Returns:
        PlantUML text, or None if the project has no root topic
    """
    root_topics = [t for t in project.topics if t.topic.kind == TopicKind.ROOT]
    if not root_topics:
        return None

    instrument = project.instrument
    normal_topics = [t for t in project.topics if t.topic.kind == TopicKind.NORMAL]
    router_out = f"{instrument.type}_NewTopic_Out"
    router_in = f"{instrument.type}_NewTopic_In"

    expanded: dict[int, list[RenderTransition]] = {}

    def render_transitions(topic_data: TopicData) -> list[RenderTransition]:
        key = id(topic_data)
        if key not in expanded:
            expanded[key] = topic_render_transitions(topic_data, instrument)
        return expanded[key]

    has_instrument_end_transitions = any(
        _split_marked_ends(t)[1] for t in root_topics
    ) or any(
        any(
            (s := t.get_state(tr.to_state)) is not None
            and s.system_node_type == SystemNodeType.INSTRUMENT_END
            for tr in t.transitions
        )
        for t in project.topics
    )

    lines = [
        "@startuml",
        "",
        f"' Instrument Aggregate: {instrument.label or instrument.type}",
        "",
        INLINE_STYLES,
        "",
        f"state {NEW_INSTRUMENT_ALIAS} <<start>>",
        "",
        f'state "{escape_label(instrument.label or instrument.type)}" as {instrument.type} {{',
        "",
    ]

    for topic_data in root_topics + normal_topics:
        prefix = f"{instrument.type}.{topic_data.topic.id}"
        states_by_id = {s.id: s for s in topic_data.states}
        positive_ends, negative_ends = _split_marked_ends(topic_data)
        is_root = topic_data.topic.kind == TopicKind.ROOT

        lines.append(f'  state "{escape_label(topic_data.topic.label or topic_data.topic.id)}" as {prefix} {{')
        lines.extend(_topic_state_lines(topic_data, prefix, "    "))
        if not _has_system_node(topic_data, SystemNodeType.TOPIC_END) and positive_ends:
            lines.append(f'    state {prefix}.End as "Topic End" <<exitPoint>>')
        lines.append("")

        for transition in render_transitions(topic_data):
            from_state = states_by_id.get(transition.from_state)
            if from_state is not None and from_state.system_node_type == SystemNodeType.NEW_INSTRUMENT:
                continue  # connected outside the instrument container
            from_alias = _state_alias(from_state, transition.from_state, prefix)
            to_alias = _state_alias(states_by_id.get(transition.to_state), transition.to_state, prefix)
            lines.append(_arrow(from_alias, to_alias, transition.label, "    "))
        for state in positive_ends:
            lines.append(f"    {prefix}.{state_enum_id(state)} --> {prefix}.End")
        for state in negative_ends:
            lines.append(f"    {prefix}.{state_enum_id(state)} --> {END_INSTRUMENT_ALIAS}")
        lines.append("  }")
        lines.append("")

        if is_root and topic_data is root_topics[-1] and normal_topics:
            lines.append("  ' New Topic router nodes")
            lines.append(f'  state "New Topic" as {router_out}')
            lines.append(f'  state "New Topic" as {router_in}')
            lines.append("")

    if normal_topics:
        for topic_data in normal_topics:
            lines.append(f"  {router_out} --> {instrument.type}.{topic_data.topic.id}.Start")
        lines.append("")
        for topic_data in normal_topics:
            if any(is_topic_end_state(s) for s in topic_data.states):
                lines.append(f"  {instrument.type}.{topic_data.topic.id}.End --> {router_in}")
        lines.append("")

    lines.append("}")
    lines.append("")

    if has_instrument_end_transitions:
        lines.append(f"state {END_INSTRUMENT_ALIAS} <<end>>")
        lines.append("")

    for topic_data in root_topics:
        prefix = f"{instrument.type}.{topic_data.topic.id}"
        states_by_id = {s.id: s for s in topic_data.states}
        for transition in render_transitions(topic_data):
            from_state = states_by_id.get(transition.from_state)
            if from_state is None or from_state.system_node_type != SystemNodeType.NEW_INSTRUMENT:
                continue
            to_alias = _state_alias(states_by_id.get(transition.to_state), transition.to_state, prefix)
            lines.append(_arrow(NEW_INSTRUMENT_ALIAS, to_alias, transition.label))
    lines.append("")

    if normal_topics:
        for topic_data in root_topics:
            positive_ends, _ = _split_marked_ends(topic_data)
            if _has_system_node(topic_data, SystemNodeType.TOPIC_END) or positive_ends:
                lines.append(f"{instrument.type}.{topic_data.topic.id}.End --> {router_out}")
        lines.append("")

    lines.append("@enduml")
    return "\n".join(lines)
