from datetime import timedelta

import pytest

from app.modules.whatsapp_connect.constants import ConnectionEvent, ConnectionStatus, MessageStatus
from app.modules.whatsapp_connect.state_machines import (
    can_transition,
    transition,
    next_message_status,
    allowed_predecessors,
)
from app.shared.utils.exceptions import InvalidStateError
from app.shared.utils.time_utils import utcnow


# --- CONNECTION LIFECYCLE ---

def test_happy_path_reaches_connected():
    status = ConnectionStatus.DISCONNECTED
    status = transition(status, ConnectionEvent.AUTHORIZATION_STARTED)
    assert status == ConnectionStatus.CONNECTING

    status = transition(status, ConnectionEvent.TOKEN_ISSUED)
    assert status == ConnectionStatus.VERIFICATION_NEEDED

    status = transition(status, ConnectionEvent.ONBOARDING_COMPLETED, access_token="token")
    assert status == ConnectionStatus.CONNECTED


def test_string_statuses_are_accepted():
    """Rows store plain strings."""
    assert transition("ERROR", "AUTHORIZATION_STARTED") == ConnectionStatus.CONNECTING


@pytest.mark.parametrize("current,event", [
    (ConnectionStatus.DISCONNECTED, ConnectionEvent.ONBOARDING_COMPLETED),
    (ConnectionStatus.CONNECTING, ConnectionEvent.ONBOARDING_COMPLETED),
    (ConnectionStatus.CONNECTED, ConnectionEvent.AUTHORIZATION_STARTED),
    (ConnectionStatus.VERIFICATION_NEEDED, ConnectionEvent.TOKEN_ISSUED),
    (ConnectionStatus.DISCONNECTED, ConnectionEvent.STEP_FAILED),
    (ConnectionStatus.DISCONNECTED, ConnectionEvent.PHONE_REGISTERED),
])
def test_illegal_pairs_raise_invalid_state(current, event):
    assert can_transition(current, event) is False
    with pytest.raises(InvalidStateError) as exc_info:
        transition(current, event, access_token="token")
    assert exc_info.value.current_state == current.value


@pytest.mark.parametrize("current", list(ConnectionStatus))
def test_disconnect_allowed_from_every_state(current):
    assert transition(current, ConnectionEvent.DISCONNECTED) == ConnectionStatus.DISCONNECTED


def test_connected_requires_access_token():
    with pytest.raises(InvalidStateError):
        transition(ConnectionStatus.VERIFICATION_NEEDED, ConnectionEvent.ONBOARDING_COMPLETED)


def test_connected_requires_unexpired_token():
    expired = utcnow() - timedelta(minutes=1)
    with pytest.raises(InvalidStateError):
        transition(
            ConnectionStatus.ERROR,
            ConnectionEvent.PHONE_REGISTERED,
            access_token="token",
            token_expires_at=expired,
        )


def test_token_without_expiry_counts_as_valid():
    status = transition(
        ConnectionStatus.CONNECTED,
        ConnectionEvent.PHONE_REGISTERED,
        access_token="token",
        token_expires_at=None,
    )
    assert status == ConnectionStatus.CONNECTED


def test_step_failed_moves_to_error():
    assert transition(ConnectionStatus.CONNECTING, ConnectionEvent.STEP_FAILED) == ConnectionStatus.ERROR
    assert transition(ConnectionStatus.VERIFICATION_NEEDED, ConnectionEvent.STEP_FAILED) == ConnectionStatus.ERROR


# --- MESSAGE STATUS ---

def test_message_status_moves_forward():
    assert next_message_status(MessageStatus.SENT, MessageStatus.DELIVERED) == MessageStatus.DELIVERED
    assert next_message_status(MessageStatus.DELIVERED, MessageStatus.READ) == MessageStatus.READ
    assert next_message_status(MessageStatus.SENT, MessageStatus.READ) == MessageStatus.READ
    assert next_message_status(MessageStatus.DELIVERED, MessageStatus.FAILED) == MessageStatus.FAILED


@pytest.mark.parametrize("current,proposed", [
    (MessageStatus.READ, MessageStatus.DELIVERED),
    (MessageStatus.FAILED, MessageStatus.READ),
    (MessageStatus.DELIVERED, MessageStatus.DELIVERED),
    (MessageStatus.READ, MessageStatus.READ),
    (MessageStatus.DELIVERED, MessageStatus.SENT),
    (MessageStatus.READ, MessageStatus.FAILED),
])
def test_message_status_never_regresses(current, proposed):
    assert next_message_status(current, proposed) is None


def test_sent_has_no_predecessors():
    assert allowed_predecessors(MessageStatus.SENT) == frozenset()


def test_status_labels_from_webhooks():
    assert MessageStatus.from_label("delivered") == MessageStatus.DELIVERED
    assert MessageStatus.from_label("deleted") is None
    assert MessageStatus.from_label("") is None
