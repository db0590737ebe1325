"""
Boundary collaborators.

The engine talks to the rest of the application through two narrow
protocols.  MasterDataCollaborator answers read-only questions about
groups and rooms before a transaction opens.  NotificationCollaborator
receives one event per committed receipt transition.  Identity comes from
the auth layer as an opaque code and needs no protocol here.
"""

from typing import Protocol, runtime_checkable

from equipment_kernel.domain.dtos import ReceiptTransitionEvent
from equipment_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


@runtime_checkable
class MasterDataCollaborator(Protocol):
    def group_exists(self, group_code: str) -> bool: ...

    def is_room_active(self, room_id: str) -> bool: ...


@runtime_checkable
class NotificationCollaborator(Protocol):
    """Fire-and-forget sink for committed transitions.

    Implementations may raise; the coordinator logs and drops the failure.
    """

    def publish(self, event: ReceiptTransitionEvent) -> None: ...


class LoggingNotifier:
    """Default notifier: writes each event to the structured log."""

    def publish(self, event: ReceiptTransitionEvent) -> None:
        logger.info(
            "receipt_transition_published",
            extra={
                "payload": event.to_payload(),
                "action": event.action,
                "occurred_at": event.occurred_at,
            },
        )
