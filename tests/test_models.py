"""Tests for the graph model: the state variants, wire format and helpers."""

import pytest
from pydantic import ValidationError

from statechart_core.models import (
    DiagramProject,
    FieldConfig,
    FieldKey,
    PlainState,
    SystemNodeType,
    SystemState,
    TopicData,
    TopicEndKind,
    TopicKind,
    Transition,
    TransitionKind,
    create_system_node,
    create_system_nodes,
    derive_transition_kind,
    is_routing_only_transition,
    is_topic_end_state,
    is_valid_enum_name,
    label_to_enum_id,
)


class TestStateVariants:
    """isSystemNode selects the state variant."""

    def test_plain_state_from_json(self):
        topic = TopicData.model_validate({
            "topic": {"id": "Main", "kind": "root"},
            "states": [{"id": "A", "label": "A", "isSystemNode": False}],
        })
        state = topic.states[0]
        assert isinstance(state, PlainState)
        assert state.system_node_type is None

    def test_system_state_from_json(self):
        topic = TopicData.model_validate({
            "topic": {"id": "Main", "kind": "root"},
            "states": [{"id": "NewInstrument", "isSystemNode": True, "systemNodeType": "NewInstrument"}],
        })
        state = topic.states[0]
        assert isinstance(state, SystemState)
        assert state.system_node_type == SystemNodeType.NEW_INSTRUMENT
        assert state.topic_end_kind is None

    def test_missing_flag_means_plain(self):
        topic = TopicData.model_validate({"topic": {"id": "Main"}, "states": [{"id": "A"}]})
        assert isinstance(topic.states[0], PlainState)
        assert topic.topic.kind == TopicKind.NORMAL

    def test_null_end_marker_means_positive(self):
        topic = TopicData.model_validate({
            "topic": {"id": "Main"},
            "states": [{"id": "A", "topicEndKind": None}, {"id": "B"}, {"id": "C", "topicEndKind": "negative"}],
        })
        assert [s.topic_end_kind for s in topic.states] == [TopicEndKind.POSITIVE, None, TopicEndKind.NEGATIVE]

    def test_unmarked_state_stays_unmarked_through_json(self):
        assert PlainState(id="A", topic_end_kind=None).topic_end_kind is None
        data = TopicData(topic={"id": "Main"}, states=[PlainState(id="A")]).model_dump(
            mode="json", by_alias=True, exclude_none=True
        )
        assert "topicEndKind" not in data["states"][0]
        assert TopicData.model_validate(data).states[0].topic_end_kind is None

    def test_system_state_requires_node_type(self):
        with pytest.raises(ValidationError):
            TopicData.model_validate({
                "topic": {"id": "Main"},
                "states": [{"id": "X", "isSystemNode": True}],
            })


class TestWireFormat:

    def test_transition_accepts_from_and_to(self):
        transition = Transition.model_validate({"id": "t1", "from": "A", "to": "B", "messageType": "Go"})
        assert transition.from_state == "A"
        assert transition.to_state == "B"
        assert transition.message_type == "Go"

    def test_transition_accepts_python_names(self):
        transition = Transition(from_state="A", to_state="B")
        assert transition.id.startswith("t")
        assert transition.kind == TransitionKind.NORMAL

    def test_project_json_round_trip_uses_camel_case(self, valid_project):
        data = valid_project.to_json_dict()
        first_transition = data["topics"][0]["transitions"][0]

        assert "createdAt" in data
        assert first_transition["from"] == "NewInstrument"
        assert first_transition["messageType"] == "Submit"
        assert data["topics"][0]["states"][0]["isSystemNode"] is True
        assert DiagramProject.from_json_dict(data).to_json_dict() == data

    def test_field_config_values_by_key(self):
        config = FieldConfig(message_types=["Submit"])
        assert config.values(FieldKey.MESSAGE_TYPES) == ["Submit"]
        assert config.values(FieldKey.FLOW_TYPES) == []
        assert config.flow_type_colors == {}


class TestHelpers:

    @pytest.mark.parametrize("name", ["A", "Type_A", "r1", "PACS008"])
    def test_valid_enum_names(self, name):
        assert is_valid_enum_name(name)

    @pytest.mark.parametrize("name", ["", "1A", "_A", "Not Valid", "a-b", "é"])
    def test_invalid_enum_names(self, name):
        assert not is_valid_enum_name(name)

    @pytest.mark.parametrize("label, expected", [
        ("Submitted", "SUBMITTED"),
        ("Order received", "ORDER_RECEIVED"),
        ("  spaced   out ", "SPACED_OUT"),
        ("3DS check!", "_3DS_CHECK"),
        ("", "STATE"),
        ("!!!", "STATE"),
    ])
    def test_label_to_enum_id(self, label, expected):
        assert label_to_enum_id(label) == expected

    def test_derive_transition_kind(self):
        new_instrument = create_system_node(SystemNodeType.NEW_INSTRUMENT)
        topic_start = create_system_node(SystemNodeType.TOPIC_START)
        topic_end = create_system_node(SystemNodeType.TOPIC_END)
        instrument_end = create_system_node(SystemNodeType.INSTRUMENT_END)
        a = PlainState(id="A", label="A")

        assert derive_transition_kind(new_instrument, a) == TransitionKind.START_INSTRUMENT
        assert derive_transition_kind(topic_start, a) == TransitionKind.START_TOPIC
        assert derive_transition_kind(a, topic_end) == TransitionKind.END_TOPIC
        assert derive_transition_kind(a, instrument_end) == TransitionKind.END_INSTRUMENT
        assert derive_transition_kind(a, a) == TransitionKind.NORMAL
        assert derive_transition_kind(a, None) == TransitionKind.NORMAL

    def test_routing_only_follows_target(self):
        fork = create_system_node(SystemNodeType.FORK)
        transition = Transition(from_state="A", to_state="Fork")
        assert is_routing_only_transition(transition, fork)
        assert not is_routing_only_transition(transition, PlainState(id="B"))
        assert not is_routing_only_transition(transition)

    def test_topic_end_states(self):
        assert is_topic_end_state(create_system_node(SystemNodeType.TOPIC_END))
        assert is_topic_end_state(PlainState(id="A", topic_end_kind="positive"))
        assert not is_topic_end_state(PlainState(id="A"))
        assert not is_topic_end_state(None)

    def test_create_system_nodes(self):
        root = create_system_nodes(TopicKind.ROOT)
        normal = create_system_nodes(TopicKind.NORMAL)
        assert [s.id for s in root] == ["NewInstrument", "TopicEnd"]
        assert [s.id for s in normal] == ["TopicStart", "TopicEnd"]
        assert root[0].stereotype == "NewInstrument"
        assert normal[0].label == "Topic Start"
