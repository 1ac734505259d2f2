"""Shared fixtures: small, valid projects that individual tests then break."""

import pytest

from statechart_core.models import (
    DiagramProject,
    Instrument,
    PlainState,
    SystemNodeType,
    Topic,
    TopicData,
    TopicKind,
    Transition,
    TransitionKind,
    create_system_node,
)


def plain(state_id, label=None, **kwargs):
    return PlainState(id=state_id, label=label or state_id, **kwargs)


def transition(transition_id, source, target, kind=TransitionKind.NORMAL, **kwargs):
    return Transition(id=transition_id, from_state=source, to_state=target, kind=kind, **kwargs)


def root_topic(topic_id="Main", extra_states=(), extra_transitions=()):
    """NewInstrument -> Submitted -> TopicEnd, fully labelled."""
    return TopicData(
        topic=Topic(id=topic_id, kind=TopicKind.ROOT),
        states=[
            create_system_node(SystemNodeType.NEW_INSTRUMENT),
            create_system_node(SystemNodeType.TOPIC_END),
            plain("Submitted"),
            *extra_states,
        ],
        transitions=[
            transition("t_start", "NewInstrument", "Submitted", TransitionKind.START_INSTRUMENT,
                       message_type="Submit", flow_type="B2B"),
            transition("t_end", "Submitted", "TopicEnd", TransitionKind.END_TOPIC),
            *extra_transitions,
        ],
    )


def normal_topic(topic_id="Settlement"):
    """TopicStart -> Settled -> TopicEnd."""
    return TopicData(
        topic=Topic(id=topic_id, kind=TopicKind.NORMAL),
        states=[
            create_system_node(SystemNodeType.TOPIC_START),
            create_system_node(SystemNodeType.TOPIC_END),
            plain("Settled"),
        ],
        transitions=[
            transition(f"{topic_id}_start", "TopicStart", "Settled", TransitionKind.START_TOPIC,
                       message_type="Settle", flow_type="B2B"),
            transition(f"{topic_id}_end", "Settled", "TopicEnd", TransitionKind.END_TOPIC),
        ],
    )


def make_project(topics=None, instrument_type="TypeA", revision="R1"):
    return DiagramProject(
        id="project-test",
        name="Test Instrument",
        instrument=Instrument(type=instrument_type, revision=revision),
        topics=[root_topic()] if topics is None else topics,
    )


@pytest.fixture
def valid_project():
    """A project that produces no issues."""
    return make_project()


@pytest.fixture
def two_topic_project():
    return make_project(topics=[root_topic(), normal_topic()])
