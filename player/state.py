"""
Session states and the transition table that drives them.

`transition` is pure: it only answers which state a trigger leads to, or
None when the trigger must be ignored in the current state. Stale callbacks
(a transport idle signal after stop, a reconnect result after teardown) end
up as ignored triggers.
"""
from enum import Enum
from typing import Optional


class SessionState(Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"
    TERMINATED = "terminated"


class Trigger(Enum):
    ENQUEUE = "enqueue"
    RESOLVED = "resolved"
    DISPATCH = "dispatch"
    BOUND = "bound"
    EXHAUSTED = "exhausted"
    TRACK_END = "track_end"
    DISCONNECT = "disconnect"
    RECONNECTED = "reconnected"
    STOP = "stop"
    TEARDOWN = "teardown"


_S = SessionState
_T = Trigger

_TRANSITIONS = {
    (_S.IDLE, _T.ENQUEUE): _S.RESOLVING,
    (_S.RESOLVING, _T.ENQUEUE): _S.RESOLVING,
    (_S.STREAMING, _T.ENQUEUE): _S.STREAMING,
    (_S.RECONNECTING, _T.ENQUEUE): _S.RECONNECTING,

    (_S.RESOLVING, _T.RESOLVED): _S.IDLE,
    (_S.IDLE, _T.RESOLVED): _S.IDLE,
    (_S.STREAMING, _T.RESOLVED): _S.STREAMING,
    (_S.RECONNECTING, _T.RESOLVED): _S.RECONNECTING,

    (_S.IDLE, _T.DISPATCH): _S.RESOLVING,
    (_S.RESOLVING, _T.DISPATCH): _S.RESOLVING,

    (_S.RESOLVING, _T.BOUND): _S.STREAMING,
    (_S.RECONNECTING, _T.BOUND): _S.STREAMING,

    (_S.RESOLVING, _T.EXHAUSTED): _S.IDLE,
    (_S.IDLE, _T.EXHAUSTED): _S.IDLE,

    (_S.STREAMING, _T.TRACK_END): _S.IDLE,

    (_S.IDLE, _T.DISCONNECT): _S.RECONNECTING,
    (_S.RESOLVING, _T.DISCONNECT): _S.RECONNECTING,
    (_S.STREAMING, _T.DISCONNECT): _S.RECONNECTING,

    (_S.RECONNECTING, _T.RECONNECTED): _S.IDLE,
}


def transition(state: SessionState, trigger: Trigger) -> Optional[SessionState]:
    """Return the state `trigger` leads to from `state`, or None to ignore it."""
    if state is SessionState.TERMINATED:
        return None
    if trigger in (Trigger.STOP, Trigger.TEARDOWN):
        return SessionState.TERMINATED
    return _TRANSITIONS.get((state, trigger))
