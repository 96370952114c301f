from __future__ import annotations

from enum import StrEnum


class ConnectionState(StrEnum):
    """
    Lifecycle of the node connection.

    disconnected -> connecting -> verifying -> ready -> reconnecting -> disconnected
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    VERIFYING = "verifying"
    READY = "ready"
    RECONNECTING = "reconnecting"
