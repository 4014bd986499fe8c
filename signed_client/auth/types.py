"""Shared types for the auth package."""

from enum import Enum


class RefreshState(Enum):
    """States of the token refresh coordinator.

    Attributes:
        IDLE: No refresh call in flight.
        REFRESHING: A refresh call is in flight; new 401s wait for it.
    """

    IDLE = "idle"
    REFRESHING = "refreshing"
