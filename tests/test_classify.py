import pytest

from conftest import make_command, make_component, option
from veil_stage.interactions.classify import (
    UnsupportedInteractionError,
    classify_interaction,
    is_private_commit,
)

PUBLIC = {"type": 5}
PRIVATE = {"type": 5, "data": {"flags": 64}}
UPDATE = {"type": 6}


def test_ping_gets_pong_without_processing():
    result = classify_interaction({"id": "1", "type": 1})
    assert result.ack == {"type": 1}
    assert result.process is False


@pytest.mark.parametrize(("payload", "ack"), [
    (make_command("roll", [option("dice", "d20")]), PUBLIC),
    (make_command("r", [option("dice", "d20")]), PUBLIC),
    (make_command("roll", [option("dice", "d20"), option("secret", True)]), PRIVATE),
    (make_command("secret", [option("dice", "d20")]), PRIVATE),
    (make_command("s", [option("dice", "d20")]), PRIVATE),
    (make_command("secret", [option("dice", "d20"), option("secret", False)]), PUBLIC),
    (make_command("timer", []), PRIVATE),
    (make_command("help"), PUBLIC),
    (make_command("mystery"), PRIVATE),
    (make_component("reveal:abc"), UPDATE),
    (make_component("tstop:3"), PRIVATE),
    (make_component("trestart:3:5:0:Boss"), PRIVATE),
    (make_component("something-else"), PRIVATE),
])
def test_acknowledgment_table(payload, ack):
    result = classify_interaction(payload)
    assert result.ack == ack
    assert result.process is True


def test_unknown_interaction_type_is_rejected():
    with pytest.raises(UnsupportedInteractionError):
        classify_interaction({"id": "1", "type": 9})


@pytest.mark.parametrize(("name", "options", "expected"), [
    ("roll", {}, False),
    ("r", {"secret": True}, True),
    ("secret", {}, True),
    ("s", {"secret": False}, False),
    ("secret", {"secret": "yes"}, True),
])
def test_privacy_decision(name, options, expected):
    assert is_private_commit(name, options) is expected


def test_classification_flags():
    private = classify_interaction(make_command("secret", [option("dice", "d6")]))
    update = classify_interaction(make_component("reveal:x"))
    assert private.private is True and private.updates_message is False
    assert update.updates_message is True and update.private is False
