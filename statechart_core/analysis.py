"""
Topic analysis - Graph views and summarization utilities.

Provides the adjacency view shared by validation rules, plus summaries
used by the backend and CLI to describe a project's structure.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, Optional

from .models import SystemNodeType, is_fork, is_topic_end_state

if TYPE_CHECKING:
    from .models import AnyState, DiagramProject, TopicData, Transition


# States a path may legitimately stop at
TERMINAL_NODE_TYPES = {SystemNodeType.TOPIC_END, SystemNodeType.INSTRUMENT_END}


@dataclass
class TopicGraph:
    """
    Directed graph over one topic's states, built once per validation pass.

    Transitions whose endpoints do not resolve are kept in `transitions` but
    contribute no edges, so traversals only ever visit real states.
    """
    topic_id: str
    states_by_id: dict[str, "AnyState"] = field(default_factory=dict)
    outgoing: dict[str, list["Transition"]] = field(default_factory=dict)
    incoming: dict[str, list["Transition"]] = field(default_factory=dict)
    entry_ids: list[str] = field(default_factory=list)

    @classmethod
    def build(cls, topic_data: "TopicData") -> "TopicGraph":
        graph = cls(topic_id=topic_data.topic.id)

        for state in topic_data.states:
            graph.states_by_id.setdefault(state.id, state)
            graph.outgoing.setdefault(state.id, [])
            graph.incoming.setdefault(state.id, [])

        for transition in topic_data.transitions:
            # Degree counts every transition naming the state, resolved or not
            graph.outgoing.setdefault(transition.from_state, []).append(transition)
            graph.incoming.setdefault(transition.to_state, []).append(transition)

        entry_type = topic_data.entry_node_type
        graph.entry_ids = [
            s.id for s in topic_data.states if s.system_node_type == entry_type
        ]
        return graph

    def state(self, state_id: str) -> Optional["AnyState"]:
        return self.states_by_id.get(state_id)

    def has_state(self, state_id: str) -> bool:
        return state_id in self.states_by_id

    def out_degree(self, state_id: str) -> int:
        return len(self.outgoing.get(state_id, []))

    def in_degree(self, state_id: str) -> int:
        return len(self.incoming.get(state_id, []))

    def successors(self, state_id: str) -> list[str]:
        """Resolved target states of a state's outgoing transitions, in order."""
        return [
            t.to_state for t in self.outgoing.get(state_id, [])
            if t.to_state in self.states_by_id
        ]

    def reachable_from(self, start_ids: Iterable[str]) -> list[str]:
        """BFS over resolved states; returns visit order."""
        visited: set[str] = set()
        order: list[str] = []
        queue = [s for s in start_ids if s in self.states_by_id]

        while queue:
            current = queue.pop(0)
            if current in visited:
                continue

            visited.add(current)
            order.append(current)

            for neighbor in self.successors(current):
                if neighbor not in visited:
                    queue.append(neighbor)

        return order

    def is_accepted_terminal(self, state_id: str) -> bool:
        state = self.states_by_id.get(state_id)
        if state is None:
            return False
        return state.system_node_type in TERMINAL_NODE_TYPES or is_topic_end_state(state)

    def dead_ends(self) -> list[str]:
        """
        Reachable states with no way out that are not accepted terminals.

        Entry nodes are left out: a topic whose entry has no outgoing
        transition is already an error of its own.
        """
        return [
            state_id for state_id in self.reachable_from(self.entry_ids)
            if self.out_degree(state_id) == 0
            and state_id not in self.entry_ids
            and not self.is_accepted_terminal(state_id)
            and not is_fork(self.states_by_id[state_id])
        ]


@dataclass
class TopicSummary:
    """Structural summary of a single topic."""
    topic_id: str
    kind: str
    total_states: int
    system_states: int
    total_transitions: int
    transitions_by_kind: dict[str, int]
    dead_end_count: int
    unreachable_count: int

    def to_dict(self) -> dict:
        return {
            "topicId": self.topic_id,
            "kind": self.kind,
            "totalStates": self.total_states,
            "systemStates": self.system_states,
            "totalTransitions": self.total_transitions,
            "transitionsByKind": self.transitions_by_kind,
            "deadEndCount": self.dead_end_count,
            "unreachableCount": self.unreachable_count,
        }


@dataclass
class ProjectSummary:
    """Complete summary of a project's structure."""
    name: str
    instrument_type: str
    revision: str
    root_topic_ids: list[str]
    topics: list[TopicSummary]
    message_types_in_use: list[str]
    flow_types_in_use: list[str]

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "instrumentType": self.instrument_type,
            "revision": self.revision,
            "rootTopicIds": self.root_topic_ids,
            "totalTopics": len(self.topics),
            "totalStates": sum(t.total_states for t in self.topics),
            "totalTransitions": sum(t.total_transitions for t in self.topics),
            "topics": [t.to_dict() for t in self.topics],
            "messageTypesInUse": self.message_types_in_use,
            "flowTypesInUse": self.flow_types_in_use,
        }


def summarize_topic(topic_data: "TopicData", graph: Optional[TopicGraph] = None) -> TopicSummary:
    """
    Summarize one topic.

    Args:
        topic_data: The topic to summarize
        graph: A prebuilt graph for the topic, built here if omitted

    Returns:
        TopicSummary object
    """
    graph = graph or TopicGraph.build(topic_data)

    kind_counts: dict[str, int] = defaultdict(int)
    for transition in topic_data.transitions:
        kind_counts[transition.kind.value] += 1

    reachable = set(graph.reachable_from(graph.entry_ids))
    unreachable = [
        s for s in topic_data.states
        if not s.is_system_node and s.id not in reachable
    ]

    return TopicSummary(
        topic_id=topic_data.topic.id,
        kind=topic_data.topic.kind.value,
        total_states=len(topic_data.states),
        system_states=sum(1 for s in topic_data.states if s.is_system_node),
        total_transitions=len(topic_data.transitions),
        transitions_by_kind=dict(kind_counts),
        dead_end_count=len(graph.dead_ends()),
        unreachable_count=len(unreachable),
    )


def summarize_project(project: "DiagramProject") -> ProjectSummary:
    """
    Generate a summary of a project.

    Args:
        project: The project to summarize

    Returns:
        ProjectSummary object with per-topic results
    """
    message_types: set[str] = set()
    flow_types: set[str] = set()
    for topic_data in project.topics:
        for transition in topic_data.transitions:
            if transition.message_type:
                message_types.add(transition.message_type)
            if transition.flow_type:
                flow_types.add(transition.flow_type)

    return ProjectSummary(
        name=project.name,
        instrument_type=project.instrument.type,
        revision=project.instrument.revision,
        root_topic_ids=[t.topic.id for t in project.topics if t.is_root],
        topics=[summarize_topic(t) for t in project.topics],
        message_types_in_use=sorted(message_types),
        flow_types_in_use=sorted(flow_types),
    )
