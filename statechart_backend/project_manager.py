"""
Project Manager - Gallery state, editing, history, and persistence.

This module implements:
- The set of instrument projects, keyed by id, unique by (type, revision)
- Topic/state/transition editing with the system node rules enforced
- The field configuration (controlled vocabularies)
- Linear undo/redo history using snapshots
- JSON workspace persistence and per-project JSON import/export
"""

import json
import logging
import uuid
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from statechart_core.models import (
    DiagramProject,
    FieldConfig,
    FieldKey,
    Instrument,
    PlainState,
    Position,
    SystemNodeType,
    SystemState,
    Topic,
    TopicData,
    TopicEndKind,
    TopicKind,
    Transition,
    create_system_node,
    create_system_nodes,
    derive_transition_kind,
    is_fork,
    is_valid_enum_name,
)

logger = logging.getLogger(__name__)

INVALID_NAME_MESSAGE = (
    "Invalid name: must follow Java enum convention "
    "(start with letter, only letters/numbers/underscores, no spaces)"
)
DEFAULT_TOPIC_ID = "Main"

# Fields a caller may change through update_transition
_TRANSITION_UPDATE_FIELDS = (
    "from_state", "to_state", "revision", "instrument", "topic",
    "message_type", "flow_type", "end_topic_kind", "teleport_enabled",
    "source_handle_id", "target_handle_id", "curve_offset",
)


class StatechartError(Exception):
    """Base class for errors raised by the project manager."""


class DuplicateInstrumentError(StatechartError):
    """Another project already models this (type, revision) pair."""

    def __init__(self, instrument_type: str, revision: str):
        self.instrument_type = instrument_type
        self.revision = revision
        super().__init__(
            f'An instrument with type "{instrument_type}" and revision "{revision}" already exists.'
        )


class InvalidFieldValueError(StatechartError, ValueError):
    """A vocabulary entry was rejected; the configuration is unchanged."""


class NotFoundError(StatechartError, LookupError):
    """A project, topic, state or transition id did not resolve."""


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class ProjectManager:
    """
    Manages all instrument projects, the field configuration, and history.

    Every mutation follows the same shape: check inputs (raising before any
    change), snapshot the project list for undo, mutate, touch the project,
    then notify listeners.

    The history system works via snapshots:
    - Each mutation stores the full project list before the change
    - Undo restores the previous snapshot
    - Redo re-applies a snapshot from the future stack
    """

    def __init__(
        self,
        workspace_path: Optional[Path] = None,
        max_history: int = 100,
        autosave: bool = False
    ):
        self._projects: dict[str, DiagramProject] = {}
        self._active_project_id: Optional[str] = None
        self._field_config = FieldConfig()
        self._workspace_path: Optional[Path] = Path(workspace_path) if workspace_path else None
        self._autosave = autosave
        self._history: list[dict] = []
        self._future: list[dict] = []
        self._max_history = max_history
        self._dirty = False
        self._on_change_callbacks: list[Callable[[Optional[str]], None]] = []

    # --- Properties ---

    @property
    def projects(self) -> list[DiagramProject]:
        return list(self._projects.values())

    @property
    def field_config(self) -> FieldConfig:
        return self._field_config

    @property
    def active_project(self) -> Optional[DiagramProject]:
        if self._active_project_id is None:
            return None
        return self._projects.get(self._active_project_id)

    @property
    def workspace_path(self) -> Optional[Path]:
        return self._workspace_path

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    @property
    def can_undo(self) -> bool:
        return len(self._history) > 0

    @property
    def can_redo(self) -> bool:
        return len(self._future) > 0

    # --- Change Callbacks ---

    def on_change(self, callback: Callable[[Optional[str]], None]):
        """Register a callback receiving the id of the changed project (or None)."""
        self._on_change_callbacks.append(callback)

    def _notify_change(self, project_id: Optional[str] = None):
        for callback in self._on_change_callbacks:
            callback(project_id)

    def _commit(self, project: Optional[DiagramProject] = None):
        """Finish a mutation: touch, mark dirty, autosave, notify."""
        if project is not None:
            project.touch()
        self._dirty = True
        if self._autosave and self._workspace_path is not None:
            self.save_workspace()
        self._notify_change(project.id if project else None)

    # --- History Management ---

    def _snapshot(self) -> dict:
        return {
            "projects": [p.to_json_dict() for p in self._projects.values()],
            "activeProjectId": self._active_project_id,
        }

    def _restore(self, snapshot: dict):
        projects = [DiagramProject.from_json_dict(p) for p in snapshot["projects"]]
        self._projects = {p.id: p for p in projects}
        active = snapshot.get("activeProjectId")
        self._active_project_id = active if active in self._projects else None

    def _save_to_history(self):
        """Save current state to history before a mutation."""
        # New action invalidates redo stack
        self._future.clear()
        self._history.append(self._snapshot())
        if len(self._history) > self._max_history:
            self._history.pop(0)

    def undo(self) -> bool:
        """Undo the last project change. Returns False if there is nothing to undo."""
        if not self.can_undo:
            return False
        self._future.append(self._snapshot())
        self._restore(self._history.pop())
        self._commit()
        return True

    def redo(self) -> bool:
        """Redo the last undone change. Returns False if there is nothing to redo."""
        if not self.can_redo:
            return False
        self._history.append(self._snapshot())
        self._restore(self._future.pop())
        self._commit()
        return True

    # --- Lookups ---

    def get_project(self, project_id: str) -> Optional[DiagramProject]:
        return self._projects.get(project_id)

    def require_project(self, project_id: str) -> DiagramProject:
        project = self._projects.get(project_id)
        if project is None:
            raise NotFoundError(f"Project not found: {project_id}")
        return project

    def require_topic(self, project_id: str, topic_id: str) -> tuple[DiagramProject, TopicData]:
        project = self.require_project(project_id)
        topic_data = project.get_topic(topic_id)
        if topic_data is None:
            raise NotFoundError(f"Topic not found: {topic_id}")
        return project, topic_data

    def _require_state(self, topic_data: TopicData, state_id: str):
        state = topic_data.get_state(state_id)
        if state is None:
            raise NotFoundError(f"State not found: {state_id}")
        return state

    def _require_transition(self, topic_data: TopicData, transition_id: str) -> Transition:
        transition = topic_data.get_transition(transition_id)
        if transition is None:
            raise NotFoundError(f"Transition not found: {transition_id}")
        return transition

    def find_by_instrument(
        self,
        instrument_type: str,
        revision: str,
        exclude_id: Optional[str] = None
    ) -> Optional[DiagramProject]:
        """Find the project modelling a (type, revision) pair, if any."""
        for project in self._projects.values():
            if project.id == exclude_id:
                continue
            if project.instrument.type == instrument_type and project.instrument.revision == revision:
                return project
        return None

    # --- Project Operations ---

    def create_project(
        self,
        instrument_type: str,
        revision: str,
        description: Optional[str] = None,
        label: Optional[str] = None,
        name: Optional[str] = None
    ) -> DiagramProject:
        """
        Create a project for a new instrument.

        The (type, revision) pair must not be in use; on a duplicate nothing
        is created and DuplicateInstrumentError is raised. The pair is
        compared trimmed; the error quotes the values as given.
        """
        raw_type, raw_revision = instrument_type or "", revision or ""
        instrument_type = raw_type.strip()
        revision = raw_revision.strip()
        if not instrument_type or not revision:
            raise ValueError("Instrument type and revision are required")
        if self.find_by_instrument(instrument_type, revision):
            raise DuplicateInstrumentError(raw_type, raw_revision)

        self._save_to_history()

        project = DiagramProject(
            name=_clean(name) or _clean(label) or instrument_type,
            instrument=Instrument(
                type=instrument_type,
                revision=revision,
                label=_clean(label),
                description=_clean(description),
            ),
            topics=[TopicData(
                topic=Topic(id=DEFAULT_TOPIC_ID, kind=TopicKind.ROOT),
                states=create_system_nodes(TopicKind.ROOT),
            )],
            selected_topic_id=DEFAULT_TOPIC_ID,
        )
        self._projects[project.id] = project
        self._active_project_id = project.id
        logger.info("Created project %s (%s %s)", project.id, instrument_type, revision)
        self._commit(project)
        return project

    def update_instrument(
        self,
        project_id: str,
        instrument_type: Optional[str] = None,
        revision: Optional[str] = None,
        label: Optional[str] = None,
        description: Optional[str] = None
    ) -> DiagramProject:
        """Update instrument fields; the new (type, revision) must stay unique."""
        project = self.require_project(project_id)
        new_type = project.instrument.type if instrument_type is None else instrument_type.strip()
        new_revision = project.instrument.revision if revision is None else revision.strip()
        if not new_type or not new_revision:
            raise ValueError("Instrument type and revision are required")
        if self.find_by_instrument(new_type, new_revision, exclude_id=project_id):
            raise DuplicateInstrumentError(new_type, new_revision)

        self._save_to_history()

        project.instrument.type = new_type
        project.instrument.revision = new_revision
        if label is not None:
            project.instrument.label = _clean(label)
        if description is not None:
            project.instrument.description = _clean(description)
        self._commit(project)
        return project

    def rename_project(self, project_id: str, name: str) -> DiagramProject:
        project = self.require_project(project_id)
        if not name or not name.strip():
            raise ValueError("Project name is required")
        self._save_to_history()
        project.name = name.strip()
        self._commit(project)
        return project

    def delete_project(self, project_id: str) -> bool:
        """Delete a project. Returns False if it does not exist."""
        if project_id not in self._projects:
            return False
        self._save_to_history()
        del self._projects[project_id]
        if self._active_project_id == project_id:
            self._active_project_id = None
        logger.info("Deleted project %s", project_id)
        self._commit()
        return True

    def select_project(self, project_id: Optional[str]) -> Optional[DiagramProject]:
        """Make a project the active one (None clears the selection)."""
        if project_id is not None:
            self.require_project(project_id)
        self._active_project_id = project_id
        self._notify_change(project_id)
        return self.active_project

    # --- Gallery ---

    def search_projects(self, search: Optional[str] = None, revision: Optional[str] = None) -> list[DiagramProject]:
        """
        Filter projects the way the gallery does.

        Args:
            search: Case-insensitive substring of type, label, description or name
            revision: Exact revision to keep

        Returns:
            Matching projects in insertion order
        """
        results = []
        needle = search.lower() if search else None
        for project in self._projects.values():
            if needle:
                haystacks = (
                    project.instrument.type,
                    project.instrument.label or "",
                    project.instrument.description or "",
                    project.name,
                )
                if not any(needle in h.lower() for h in haystacks):
                    continue
            if revision and project.instrument.revision != revision:
                continue
            results.append(project)
        return results

    def revisions(self) -> list[str]:
        """Distinct revisions in use, sorted."""
        return sorted({p.instrument.revision for p in self._projects.values()})

    def group_by_revision(
        self,
        projects: Optional[list[DiagramProject]] = None
    ) -> list[tuple[str, list[DiagramProject]]]:
        """Group projects by revision: revisions descending, types ascending within a group."""
        projects = self.projects if projects is None else projects
        groups: dict[str, list[DiagramProject]] = {}
        for project in projects:
            groups.setdefault(project.instrument.revision, []).append(project)
        return [
            (revision, sorted(groups[revision], key=lambda p: p.instrument.type))
            for revision in sorted(groups, reverse=True)
        ]

    # --- Topic Operations ---

    def _rewire_entry_node(self, topic_data: TopicData, node_type: SystemNodeType):
        """Swap a topic's entry node to `node_type`, moving its transitions along."""
        old_type = (
            SystemNodeType.TOPIC_START
            if node_type == SystemNodeType.NEW_INSTRUMENT
            else SystemNodeType.NEW_INSTRUMENT
        )
        old_node = topic_data.find_system_node(old_type)
        if old_node is None:
            return

        new_node = create_system_node(node_type, old_node.position.x, old_node.position.y)
        topic_data.states = [new_node if s is old_node else s for s in topic_data.states]

        for transition in topic_data.transitions:
            if transition.from_state == old_node.id:
                transition.from_state = new_node.id
            if transition.to_state == old_node.id:
                transition.to_state = new_node.id
        self._rederive_kinds(topic_data)

    @staticmethod
    def _rederive_kinds(topic_data: TopicData):
        for transition in topic_data.transitions:
            from_state = topic_data.get_state(transition.from_state)
            to_state = topic_data.get_state(transition.to_state)
            transition.kind = derive_transition_kind(from_state, to_state)
            transition.is_routing_only = is_fork(to_state)

    def _demote_roots(self, project: DiagramProject, keep: Optional[str] = None):
        for topic_data in project.topics:
            if topic_data.topic.kind == TopicKind.ROOT and topic_data.topic.id != keep:
                topic_data.topic.kind = TopicKind.NORMAL
                self._rewire_entry_node(topic_data, SystemNodeType.TOPIC_START)

    def create_topic(
        self,
        project_id: str,
        topic_id: str,
        kind: TopicKind = TopicKind.NORMAL,
        label: Optional[str] = None
    ) -> TopicData:
        """Add a topic; creating a root topic demotes the current root."""
        project = self.require_project(project_id)
        topic_id = (topic_id or "").strip()
        kind = TopicKind(kind)
        if not topic_id:
            raise ValueError("Topic ID is required")
        if project.get_topic(topic_id) is not None:
            raise ValueError(f'Topic "{topic_id}" already exists')

        self._save_to_history()

        if kind == TopicKind.ROOT:
            self._demote_roots(project)
        topic_data = TopicData(
            topic=Topic(id=topic_id, kind=kind, label=_clean(label)),
            states=create_system_nodes(kind),
        )
        project.topics.append(topic_data)
        project.selected_topic_id = topic_id
        self._commit(project)
        return topic_data

    def update_topic(self, project_id: str, topic_id: str, label: Optional[str] = None) -> TopicData:
        project, topic_data = self.require_topic(project_id, topic_id)
        self._save_to_history()
        if label is not None:
            topic_data.topic.label = _clean(label)
        self._commit(project)
        return topic_data

    def set_root_topic(self, project_id: str, topic_id: str) -> TopicData:
        """Make a topic the root, demoting any other root."""
        project, topic_data = self.require_topic(project_id, topic_id)
        self._save_to_history()

        self._demote_roots(project, keep=topic_id)
        topic_data.topic.kind = TopicKind.ROOT
        self._rewire_entry_node(topic_data, SystemNodeType.NEW_INSTRUMENT)
        self._commit(project)
        return topic_data

    def delete_topic(self, project_id: str, topic_id: str) -> bool:
        project = self.require_project(project_id)
        if project.get_topic(topic_id) is None:
            return False
        self._save_to_history()
        project.topics = [t for t in project.topics if t.topic.id != topic_id]
        if project.selected_topic_id == topic_id:
            project.selected_topic_id = project.topics[0].topic.id if project.topics else None
        self._commit(project)
        return True

    def select_topic(self, project_id: str, topic_id: str) -> TopicData:
        project, topic_data = self.require_topic(project_id, topic_id)
        project.selected_topic_id = topic_id
        self._notify_change(project_id)
        return topic_data

    # --- State Operations ---

    def add_state(
        self,
        project_id: str,
        topic_id: str,
        state_id: str,
        label: Optional[str] = None,
        x: float = 250,
        y: float = 200
    ) -> PlainState:
        """Add a user state; the label defaults to the id."""
        project, topic_data = self.require_topic(project_id, topic_id)
        state_id = (state_id or "").strip()
        if not state_id:
            raise ValueError("State ID is required")
        if topic_data.get_state(state_id) is not None:
            raise ValueError(f'State "{state_id}" already exists in topic "{topic_id}"')

        state = PlainState(
            id=state_id,
            label=_clean(label) or state_id,
            stereotype=state_id,
            position=Position(x=x, y=y),
        )

        self._save_to_history()
        topic_data.states.append(state)
        self._commit(project)
        return state

    def _add_system_node(
        self,
        project_id: str,
        topic_id: str,
        node_type: SystemNodeType,
        x: float,
        y: float
    ) -> SystemState:
        project, topic_data = self.require_topic(project_id, topic_id)
        existing = topic_data.find_system_node(node_type)
        if existing is not None:
            return existing

        self._save_to_history()
        node = create_system_node(node_type, x, y)
        topic_data.states.append(node)
        self._commit(project)
        return node

    def add_instrument_end(self, project_id: str, topic_id: str) -> SystemState:
        """Add the InstrumentEnd node (no-op if the topic already has one)."""
        return self._add_system_node(project_id, topic_id, SystemNodeType.INSTRUMENT_END, 500, 300)

    def add_topic_end(self, project_id: str, topic_id: str) -> SystemState:
        """Add the TopicEnd node (no-op if the topic already has one)."""
        return self._add_system_node(project_id, topic_id, SystemNodeType.TOPIC_END, 400, 300)

    def add_fork(self, project_id: str, topic_id: str, x: float = 250, y: float = 250) -> SystemState:
        """Add a Fork node; each fork gets its own id."""
        project, topic_data = self.require_topic(project_id, topic_id)
        fork_id = SystemNodeType.FORK.value
        suffix = 1
        while topic_data.get_state(fork_id) is not None:
            suffix += 1
            fork_id = f"{SystemNodeType.FORK.value}_{suffix}"

        self._save_to_history()
        fork = create_system_node(SystemNodeType.FORK, x, y).model_copy(update={"id": fork_id})
        topic_data.states.append(fork)
        self._commit(project)
        return fork

    def update_state(
        self,
        project_id: str,
        topic_id: str,
        state_id: str,
        label: Optional[str] = None,
        stereotype: Optional[str] = None
    ) -> PlainState:
        """Update a user state's label or stereotype. System nodes are immutable."""
        project, topic_data = self.require_topic(project_id, topic_id)
        state = self._require_state(topic_data, state_id)
        if state.is_system_node:
            raise ValueError(f'System node "{state_id}" cannot be edited')

        self._save_to_history()
        if label is not None:
            state.label = label.strip()
        if stereotype is not None:
            state.stereotype = _clean(stereotype)
        self._commit(project)
        return state

    def mark_topic_end(
        self,
        project_id: str,
        topic_id: str,
        state_id: str,
        end_kind: Optional[TopicEndKind]
    ) -> PlainState:
        """Mark a user state as an accepted topic end, or clear the mark with None."""
        project, topic_data = self.require_topic(project_id, topic_id)
        state = self._require_state(topic_data, state_id)
        if state.is_system_node:
            raise ValueError(f'System node "{state_id}" cannot be marked as a topic end')
        end_kind = TopicEndKind(end_kind) if end_kind is not None else None

        self._save_to_history()
        state.topic_end_kind = end_kind
        self._commit(project)
        return state

    def move_state(self, project_id: str, topic_id: str, state_id: str, x: float, y: float):
        """Move any state, system nodes included."""
        project, topic_data = self.require_topic(project_id, topic_id)
        state = self._require_state(topic_data, state_id)
        position = Position(x=x, y=y)
        self._save_to_history()
        state.position = position
        self._commit(project)
        return state

    def delete_state(self, project_id: str, topic_id: str, state_id: str) -> bool:
        """
        Delete a state and every transition touching it.

        Entry nodes and TopicEnd can never be deleted; InstrumentEnd only
        while the topic still has a TopicEnd.
        """
        project, topic_data = self.require_topic(project_id, topic_id)
        state = topic_data.get_state(state_id)
        if state is None:
            return False

        if state.is_system_node:
            node_type = state.system_node_type
            if node_type == SystemNodeType.INSTRUMENT_END:
                if topic_data.find_system_node(SystemNodeType.TOPIC_END) is None:
                    raise ValueError("InstrumentEnd can only be deleted while the topic has a TopicEnd")
            elif node_type != SystemNodeType.FORK:
                raise ValueError(f"{node_type.value} cannot be deleted")

        self._save_to_history()
        topic_data.states = [s for s in topic_data.states if s.id != state_id]
        topic_data.transitions = [
            t for t in topic_data.transitions
            if t.from_state != state_id and t.to_state != state_id
        ]
        self._commit(project)
        return True

    # --- Transition Operations ---

    def add_transition(
        self,
        project_id: str,
        topic_id: str,
        from_state: str,
        to_state: str,
        message_type: Optional[str] = None,
        flow_type: Optional[str] = None,
        revision: Optional[str] = None,
        instrument: Optional[str] = None,
        topic: Optional[str] = None,
        source_handle_id: Optional[str] = None,
        target_handle_id: Optional[str] = None
    ) -> Transition:
        """Connect two states of a topic. The kind is derived from the endpoints."""
        project, topic_data = self.require_topic(project_id, topic_id)
        source = topic_data.get_state(from_state)
        target = topic_data.get_state(to_state)
        if source is None:
            raise ValueError(f"Source state not found: {from_state}")
        if target is None:
            raise ValueError(f"Target state not found: {to_state}")

        self._save_to_history()
        transition = Transition(
            from_state=from_state,
            to_state=to_state,
            kind=derive_transition_kind(source, target),
            is_routing_only=is_fork(target),
            message_type=_clean(message_type),
            flow_type=_clean(flow_type),
            revision=_clean(revision),
            instrument=_clean(instrument),
            topic=_clean(topic),
            source_handle_id=source_handle_id or "source-bottom",
            target_handle_id=target_handle_id or "target-top",
        )
        topic_data.transitions.append(transition)
        self._commit(project)
        return transition

    def update_transition(self, project_id: str, topic_id: str, transition_id: str, **changes) -> Transition:
        """
        Update a transition (partial update).

        None values are ignored; an empty string clears an optional text
        field. The kind is always re-derived from the endpoints.
        """
        project, topic_data = self.require_topic(project_id, topic_id)
        transition = self._require_transition(topic_data, transition_id)

        unknown = set(changes) - set(_TRANSITION_UPDATE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown transition fields: {', '.join(sorted(unknown))}")
        updates = {}
        for key, value in changes.items():
            if value is None:
                continue
            if key in ("from_state", "to_state"):
                if topic_data.get_state(value) is None:
                    raise ValueError(f"State not found: {value}")
            elif isinstance(value, str):
                value = _clean(value)
            if key == "end_topic_kind" and value is not None:
                value = TopicEndKind(value)
            updates[key] = value

        self._save_to_history()
        for key, value in updates.items():
            setattr(transition, key, value)

        source = topic_data.get_state(transition.from_state)
        target = topic_data.get_state(transition.to_state)
        transition.kind = derive_transition_kind(source, target)
        transition.is_routing_only = is_fork(target)
        self._commit(project)
        return transition

    def delete_transition(self, project_id: str, topic_id: str, transition_id: str) -> bool:
        project, topic_data = self.require_topic(project_id, topic_id)
        if topic_data.get_transition(transition_id) is None:
            return False
        self._save_to_history()
        topic_data.transitions = [t for t in topic_data.transitions if t.id != transition_id]
        self._commit(project)
        return True

    # --- Field Configuration ---

    def add_field_value(self, field: FieldKey, value: str) -> list[str]:
        """
        Append a vocabulary entry.

        Raises:
            InvalidFieldValueError: the value breaks the Java enum naming
                rule or is already present; nothing is changed
        """
        field = FieldKey(field)
        value = (value or "").strip()
        if not is_valid_enum_name(value):
            raise InvalidFieldValueError(INVALID_NAME_MESSAGE)
        values = self._field_config.values(field)
        if value in values:
            raise InvalidFieldValueError(f'"{value}" already exists')

        values.append(value)
        self._commit()
        return values

    def remove_field_value(self, field: FieldKey, value: str) -> list[str]:
        field = FieldKey(field)
        values = self._field_config.values(field)
        if value not in values:
            raise NotFoundError(f'"{value}" is not in {field.value}')
        values.remove(value)
        if field == FieldKey.FLOW_TYPES:
            self._field_config.flow_type_colors.pop(value, None)
        self._commit()
        return values

    def set_flow_type_color(self, flow_type: str, color: Optional[str]) -> dict[str, str]:
        """Assign a display color to a flow type, or clear it with None."""
        if flow_type not in self._field_config.flow_types:
            raise NotFoundError(f'"{flow_type}" is not in flowTypes')
        if color:
            self._field_config.flow_type_colors[flow_type] = color
        else:
            self._field_config.flow_type_colors.pop(flow_type, None)
        self._commit()
        return self._field_config.flow_type_colors

    def replace_field_config(self, config: FieldConfig) -> FieldConfig:
        """Replace the whole configuration; every entry must pass the naming rule."""
        for field in FieldKey:
            for value in config.values(field):
                if not is_valid_enum_name(value):
                    raise InvalidFieldValueError(INVALID_NAME_MESSAGE)
        self._field_config = config.model_copy(deep=True)
        self._commit()
        return self._field_config

    # --- Import/Export ---

    def export_project_json(self, project_id: str) -> str:
        project = self.require_project(project_id)
        return json.dumps(project.to_json_dict(), indent=2)

    def import_project_json(self, text: str) -> DiagramProject:
        """
        Add a project from its JSON export.

        The instrument pair must be unused; a colliding id is replaced.
        """
        try:
            project = DiagramProject.model_validate_json(text)
        except ValidationError as e:
            raise ValueError(f"Invalid project JSON: {e}") from e

        if self.find_by_instrument(project.instrument.type, project.instrument.revision):
            raise DuplicateInstrumentError(project.instrument.type, project.instrument.revision)
        if project.id in self._projects:
            project.id = f"project-{uuid.uuid4().hex[:8]}"

        self._save_to_history()
        self._projects[project.id] = project
        self._active_project_id = project.id
        logger.info("Imported project %s", project.id)
        self._commit(project)
        return project

    def workspace_dict(self) -> dict:
        return {
            "projects": [p.to_json_dict() for p in self._projects.values()],
            "fieldConfig": self._field_config.model_dump(mode="json", by_alias=True),
        }

    # --- Persistence ---

    def configure_persistence(self, workspace_path: Optional[str | Path], autosave: bool):
        """Set the default workspace file and whether every change is written to it."""
        self._workspace_path = Path(workspace_path) if workspace_path else None
        self._autosave = autosave

    def load_workspace(self, file_path: Optional[str | Path] = None) -> int:
        """
        Load projects and field config from a workspace JSON file.

        Returns:
            Number of projects loaded
        """
        path = Path(file_path) if file_path else self._workspace_path
        if path is None:
            raise ValueError("No workspace path specified")
        if not path.exists():
            raise FileNotFoundError(f"Workspace file not found: {path}")

        with open(path, "r") as f:
            data = json.load(f)

        try:
            projects = [DiagramProject.from_json_dict(p) for p in data.get("projects", [])]
            field_config = FieldConfig.model_validate(data.get("fieldConfig", {}))
        except ValidationError as e:
            raise ValueError(f"Invalid workspace file {path}: {e}") from e

        self._projects = {p.id: p for p in projects}
        self._field_config = field_config
        self._active_project_id = None
        self._workspace_path = path
        self._history.clear()
        self._future.clear()
        self._dirty = False
        logger.info("Loaded %d projects from %s", len(projects), path)
        self._notify_change()
        return len(projects)

    def save_workspace(self, file_path: Optional[str | Path] = None) -> Path:
        """Write every project and the field config to a JSON file."""
        if file_path:
            path = Path(file_path)
        elif self._workspace_path:
            path = self._workspace_path
        else:
            raise ValueError("No file path specified and no current workspace path")

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.workspace_dict(), f, indent=2)

        self._workspace_path = path
        self._dirty = False
        logger.debug("Saved workspace to %s", path)
        return path

    def get_state(self) -> dict:
        """Get the gallery state for API responses."""
        return {
            "projects": [
                {
                    "id": p.id,
                    "name": p.name,
                    "instrument": p.instrument.model_dump(by_alias=True, exclude_none=True),
                    "topicCount": len(p.topics),
                    "updatedAt": p.updated_at.isoformat(),
                }
                for p in self._projects.values()
            ],
            "activeProjectId": self._active_project_id,
            "workspacePath": str(self._workspace_path) if self._workspace_path else None,
            "isDirty": self._dirty,
            "canUndo": self.can_undo,
            "canRedo": self.can_redo,
        }


# Global instance for the application
project_manager = ProjectManager()
