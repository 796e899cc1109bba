"""
Connection and message-status state machines.

Every status change in the module goes through one of the two functions
below; nothing else compares or assigns statuses directly.
"""
from datetime import datetime
from typing import Dict, FrozenSet, Optional, Tuple

from app.modules.whatsapp_connect.constants import (
    ConnectionEvent,
    ConnectionStatus,
    MessageStatus,
)
from app.shared.utils.exceptions import InvalidStateError
from app.shared.utils.time_utils import is_expired


# ============================================
# CONNECTION LIFECYCLE
# ============================================

_ANY_STATE = frozenset(ConnectionStatus)

# event -> (allowed source states, target state)
CONNECTION_TRANSITIONS: Dict[ConnectionEvent, Tuple[FrozenSet[ConnectionStatus], ConnectionStatus]] = {
    ConnectionEvent.AUTHORIZATION_STARTED: (
        frozenset({ConnectionStatus.DISCONNECTED, ConnectionStatus.ERROR}),
        ConnectionStatus.CONNECTING,
    ),
    ConnectionEvent.TOKEN_ISSUED: (
        frozenset({ConnectionStatus.CONNECTING}),
        ConnectionStatus.VERIFICATION_NEEDED,
    ),
    ConnectionEvent.ONBOARDING_COMPLETED: (
        frozenset({ConnectionStatus.VERIFICATION_NEEDED}),
        ConnectionStatus.CONNECTED,
    ),
    ConnectionEvent.PHONE_REGISTERED: (
        frozenset({
            ConnectionStatus.VERIFICATION_NEEDED,
            ConnectionStatus.ERROR,
            ConnectionStatus.CONNECTED,
        }),
        ConnectionStatus.CONNECTED,
    ),
    ConnectionEvent.STEP_FAILED: (
        frozenset({ConnectionStatus.CONNECTING, ConnectionStatus.VERIFICATION_NEEDED}),
        ConnectionStatus.ERROR,
    ),
    ConnectionEvent.DISCONNECTED: (
        _ANY_STATE,
        ConnectionStatus.DISCONNECTED,
    ),
}


def can_transition(current: ConnectionStatus, event: ConnectionEvent) -> bool:
    sources, _ = CONNECTION_TRANSITIONS[ConnectionEvent(event)]
    return ConnectionStatus(current) in sources


def transition(
    current: ConnectionStatus,
    event: ConnectionEvent,
    access_token: Optional[str] = None,
    token_expires_at: Optional[datetime] = None,
) -> ConnectionStatus:
    """
    Return the status that `event` moves a tenant in `current` to.

    Raises InvalidStateError for pairs not in CONNECTION_TRANSITIONS, and for
    any move into CONNECTED without a present, unexpired access token.
    """
    current = ConnectionStatus(current)
    event = ConnectionEvent(event)
    sources, target = CONNECTION_TRANSITIONS[event]

    if current not in sources:
        raise InvalidStateError(
            f"Cannot apply {event.value} while {current.value}",
            current_state=current.value,
        )

    if target == ConnectionStatus.CONNECTED:
        if not access_token:
            raise InvalidStateError(
                f"Cannot apply {event.value}: no access token",
                current_state=current.value,
            )
        if is_expired(token_expires_at):
            raise InvalidStateError(
                f"Cannot apply {event.value}: access token expired",
                current_state=current.value,
            )

    return target


# ============================================
# MESSAGE STATUS
# ============================================

# status -> statuses it may be reached from
MESSAGE_STATUS_PREDECESSORS: Dict[MessageStatus, FrozenSet[MessageStatus]] = {
    MessageStatus.SENT: frozenset(),
    MessageStatus.DELIVERED: frozenset({MessageStatus.SENT}),
    MessageStatus.READ: frozenset({MessageStatus.SENT, MessageStatus.DELIVERED}),
    MessageStatus.FAILED: frozenset({MessageStatus.SENT, MessageStatus.DELIVERED}),
}

TERMINAL_MESSAGE_STATUSES = frozenset({MessageStatus.READ, MessageStatus.FAILED})


def allowed_predecessors(target: MessageStatus) -> FrozenSet[MessageStatus]:
    return MESSAGE_STATUS_PREDECESSORS[MessageStatus(target)]


def next_message_status(current: MessageStatus, proposed: MessageStatus) -> Optional[MessageStatus]:
    """
    Return `proposed` if the message may move there from `current`, else None.

    None covers repeats, regressions (DELIVERED after READ) and anything
    after a terminal status.
    """
    current = MessageStatus(current)
    proposed = MessageStatus(proposed)
    if current in allowed_predecessors(proposed):
        return proposed
    return None
