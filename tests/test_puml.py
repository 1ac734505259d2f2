"""Tests for PlantUML generation."""

from conftest import make_project, normal_topic, plain, root_topic, transition
from statechart_core.models import (
    Instrument,
    SystemNodeType,
    Topic,
    TopicEndKind,
    Transition,
    TransitionKind,
    create_system_node,
)
from statechart_core.puml import (
    escape_label,
    generate_aggregate_puml,
    generate_topic_puml,
    transition_label,
)


class TestTransitionLabel:
    instrument = Instrument(type="TypeA", revision="R1")
    topic = Topic(id="Main")

    def label(self, **kwargs):
        return transition_label(Transition(from_state="A", to_state="B", **kwargs), self.instrument, self.topic)

    def test_message_and_flow(self):
        assert self.label(message_type="Submit", flow_type="B2B") == "Submit B2B"

    def test_missing_message_gives_empty_label(self):
        assert self.label(flow_type="B2B") == ""

    def test_end_transitions_are_unlabelled(self):
        assert self.label(kind=TransitionKind.END_TOPIC, message_type="Submit", flow_type="B2B") == ""

    def test_revision_pulls_in_instrument_and_topic(self):
        assert self.label(revision="R2", message_type="Submit", flow_type="B2B") == "R2 TypeA Main Submit B2B"

    def test_instrument_pulls_in_topic(self):
        assert self.label(instrument="TypeB", message_type="Go", flow_type="B2C") == "TypeB Main Go B2C"

    def test_topic_alone(self):
        assert self.label(topic="Other", message_type="Go", flow_type="B2C") == "Other Go B2C"

    def test_escape_label(self):
        assert escape_label('say "hi"') == 'say \\"hi\\"'


class TestTopicPuml:

    def test_unknown_topic(self, valid_project):
        assert generate_topic_puml(valid_project, "Nope") is None

    def test_root_topic(self, valid_project):
        puml = generate_topic_puml(valid_project, "Main")
        lines = puml.splitlines()

        assert lines[0] == "@startuml"
        assert lines[-1] == "@enduml"
        assert "state NewInstrument <<start>>" in lines
        assert 'state TypeA.Main.End as "Topic End" <<exitPoint>>' in lines
        assert 'state "Submitted" as TypeA.Main.SUBMITTED <<SUBMITTED>>' in lines
        assert "NewInstrument --> TypeA.Main.SUBMITTED : Submit B2B" in lines
        assert "TypeA.Main.SUBMITTED --> TypeA.Main.End" in lines
        assert "state EndInstrument <<end>>" not in lines

    def test_normal_topic_uses_entry_point(self, two_topic_project):
        lines = generate_topic_puml(two_topic_project, "Settlement").splitlines()

        assert 'state TypeA.Settlement.Start as "Topic Start" <<entryPoint>>' in lines
        assert "TypeA.Settlement.Start --> TypeA.Settlement.SETTLED : Settle B2B" in lines

    def test_fork_is_expanded(self):
        topic = root_topic(
            extra_states=[create_system_node(SystemNodeType.FORK), plain("Left"), plain("Right")],
            extra_transitions=[
                transition("t_fork", "Submitted", "Fork"),
                transition("t_left", "Fork", "Left", message_type="GoLeft", flow_type="B2B"),
                transition("t_right", "Fork", "Right", message_type="GoRight", flow_type="B2B"),
            ],
        )
        puml = generate_topic_puml(make_project(topics=[topic]), "Main")

        assert "Fork" not in puml
        assert "TypeA.Main.SUBMITTED --> TypeA.Main.LEFT : GoLeft B2B" in puml
        assert "TypeA.Main.SUBMITTED --> TypeA.Main.RIGHT : GoRight B2B" in puml

    def test_marked_ends_connect_to_topic_and_instrument_end(self):
        topic = root_topic(
            extra_states=[
                plain("Done", topic_end_kind=TopicEndKind.POSITIVE),
                plain("Rejected", topic_end_kind=TopicEndKind.NEGATIVE),
            ],
            extra_transitions=[
                transition("t_done", "Submitted", "Done", message_type="Finish", flow_type="B2B"),
                transition("t_rej", "Submitted", "Rejected", message_type="Reject", flow_type="B2B"),
            ],
        )
        lines = generate_topic_puml(make_project(topics=[topic]), "Main").splitlines()

        assert "TypeA.Main.DONE --> TypeA.Main.End" in lines
        assert "TypeA.Main.REJECTED --> EndInstrument" in lines
        assert "state EndInstrument <<end>>" in lines


class TestAggregatePuml:

    def test_requires_root_topic(self):
        assert generate_aggregate_puml(make_project(topics=[normal_topic()])) is None

    def test_single_root_topic(self, valid_project):
        lines = generate_aggregate_puml(valid_project).splitlines()

        assert 'state "TypeA" as TypeA {' in lines
        assert '  state "Main" as TypeA.Main {' in lines
        assert "NewInstrument --> TypeA.Main.SUBMITTED : Submit B2B" in lines
        assert "    TypeA.Main.SUBMITTED --> TypeA.Main.End" in lines
        assert not any("NewTopic" in line for line in lines)

    def test_normal_topics_hang_off_router(self, two_topic_project):
        lines = generate_aggregate_puml(two_topic_project).splitlines()

        assert '  state "New Topic" as TypeA_NewTopic_Out' in lines
        assert "  TypeA_NewTopic_Out --> TypeA.Settlement.Start" in lines
        assert "  TypeA.Settlement.End --> TypeA_NewTopic_In" in lines
        assert "TypeA.Main.End --> TypeA_NewTopic_Out" in lines
