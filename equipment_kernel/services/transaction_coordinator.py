"""
TransactionCoordinator -- one atomic unit per engine operation.

Responsibility:
    Opens a session, hands the caller a UnitOfWork whose components all
    share that session, commits on success and rolls back in full on any
    exception.  Database lock failures are translated into typed
    ConflictErrors.  Receipt transition events are published only after
    the commit succeeds.

Architecture position:
    Kernel > Services -- the only place that commits.  Used by the public
    facade (``reservation_service.py``), scripts and tests.

Invariants enforced:
    - Read-check-write of every mutating operation happens in one
      transaction.  Nested ``unit_of_work()`` calls in the same execution
      context join the active unit; there is never an inner commit.
    - No partial writes: every exception rolls back the whole unit.
    - No indefinite blocking: PostgreSQL runs each transaction with
      ``SET LOCAL lock_timeout``; SQLite uses a bounded busy timeout.
    - No retries.  Conflicts surface to the caller.
    - Notification failures are logged and dropped; they never undo a
      committed transition.

Failure modes:
    - ConcurrentModificationError: lock timeout, deadlock, serialization
      failure, busy SQLite database, or an unexpected unique violation.
    - DuplicateAllocationError: unique violation on allocation serials
      that escaped the ledger.
    - Any EquipmentKernelError raised by the components, unchanged.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from functools import cached_property
from typing import Callable, Iterator, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from equipment_kernel.config import EngineSettings
from equipment_kernel.domain.clock import Clock, SystemClock
from equipment_kernel.domain.dtos import ReceiptTransitionEvent
from equipment_kernel.exceptions import (
    ConcurrentModificationError,
    DuplicateAllocationError,
    EquipmentKernelError,
)
from equipment_kernel.logging_config import LogContext, get_logger
from equipment_kernel.selectors.equipment_selector import EquipmentSelector
from equipment_kernel.selectors.receipt_selector import ReceiptSelector
from equipment_kernel.services.allocation_ledger import AllocationLedger
from equipment_kernel.services.collaborators import (
    LoggingNotifier,
    NotificationCollaborator,
)
from equipment_kernel.services.equipment_registry import EquipmentRegistry
from equipment_kernel.services.receipt_state_machine import ReceiptStateMachine
from equipment_kernel.services.reservation_engine import ReservationEngine
from equipment_kernel.services.sequence_service import SequenceService

logger = get_logger("services.transaction")

T = TypeVar("T")

_active_unit: ContextVar["UnitOfWork | None"] = ContextVar(
    "equipment_active_unit_of_work", default=None
)

# PostgreSQL SQLSTATEs for lock_not_available, deadlock_detected and
# serialization_failure.
_PG_LOCK_CODES = frozenset({"55P03", "40P01", "40001"})
_LOCK_MARKERS = (
    "database is locked",
    "database table is locked",
    "lock timeout",
    "deadlock detected",
    "could not obtain lock",
    "could not serialize access",
)


def _is_lock_failure(exc: OperationalError) -> bool:
    if getattr(exc.orig, "pgcode", None) in _PG_LOCK_CODES:
        return True
    message = str(exc.orig).lower()
    return any(marker in message for marker in _LOCK_MARKERS)


class UnitOfWork:
    """
    One session and the components wired onto it.

    Components are built lazily so a read-only operation does not pay for
    the whole graph.  All of them share ``session`` and therefore the
    transaction.
    """

    def __init__(self, session: Session, clock: Clock, settings: EngineSettings):
        self.session = session
        self.clock = clock
        self.settings = settings

    @cached_property
    def registry(self) -> EquipmentRegistry:
        return EquipmentRegistry(
            self.session,
            clock=self.clock,
            serial_separator=self.settings.serial_prefix_separator,
        )

    @cached_property
    def ledger(self) -> AllocationLedger:
        return AllocationLedger(self.session, self.registry, clock=self.clock)

    @cached_property
    def reservation(self) -> ReservationEngine:
        return ReservationEngine(self.session)

    @cached_property
    def sequences(self) -> SequenceService:
        return SequenceService(self.session)

    @cached_property
    def state_machine(self) -> ReceiptStateMachine:
        return ReceiptStateMachine(
            self.session,
            registry=self.registry,
            ledger=self.ledger,
            reservation=self.reservation,
            sequences=self.sequences,
            clock=self.clock,
        )

    @cached_property
    def equipment(self) -> EquipmentSelector:
        return EquipmentSelector(self.session)

    @cached_property
    def receipts(self) -> ReceiptSelector:
        return ReceiptSelector(self.session)

    @property
    def events(self) -> list[ReceiptTransitionEvent]:
        if "state_machine" not in self.__dict__:
            return []
        return list(self.state_machine.events)


class TransactionCoordinator:
    """
    Runs engine operations in single transactions.

    Usage:
        coordinator = TransactionCoordinator(get_session_factory())
        with coordinator.unit_of_work("approve") as uow:
            uow.state_machine.approve(receipt_id, "U-042")
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        notifier: NotificationCollaborator | None = None,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
    ):
        self._session_factory = session_factory
        self._notifier = notifier or LoggingNotifier()
        self._clock = clock or SystemClock()
        self._settings = settings or EngineSettings()

    @property
    def clock(self) -> Clock:
        return self._clock

    @contextmanager
    def unit_of_work(self, operation: str = "unit_of_work") -> Iterator[UnitOfWork]:
        """
        Yield a UnitOfWork; commit on normal exit, roll back on any exception.

        Re-entrant: inside an active unit, yields that unit unchanged.
        """
        active = _active_unit.get()
        if active is not None:
            yield active
            return

        session = self._session_factory()
        uow = UnitOfWork(session, self._clock, self._settings)
        token = _active_unit.set(uow)
        try:
            with LogContext.bind(operation=operation):
                self._apply_lock_timeout(session)
                logger.debug("transaction_started")
                try:
                    yield uow
                    session.commit()
                except EquipmentKernelError as exc:
                    session.rollback()
                    logger.warning(
                        "transaction_rolled_back",
                        extra={"error_code": exc.code, "error": str(exc)},
                    )
                    raise
                except IntegrityError as exc:
                    session.rollback()
                    mapped = self._map_integrity_error(operation, exc)
                    logger.warning(
                        "transaction_rolled_back",
                        extra={"error_code": mapped.code, "error": str(exc.orig)},
                    )
                    raise mapped from exc
                except OperationalError as exc:
                    session.rollback()
                    if not _is_lock_failure(exc):
                        logger.error("transaction_failed", exc_info=True)
                        raise
                    logger.warning(
                        "transaction_rolled_back",
                        extra={
                            "error_code": ConcurrentModificationError.code,
                            "error": str(exc.orig),
                        },
                    )
                    raise ConcurrentModificationError(
                        operation, str(exc.orig)
                    ) from exc
                except BaseException:
                    session.rollback()
                    logger.warning("transaction_rolled_back", exc_info=True)
                    raise
                events = uow.events
                logger.debug(
                    "transaction_committed",
                    extra={"event_count": len(events)},
                )
        finally:
            _active_unit.reset(token)
            session.close()

        self._publish(events)

    def run(self, operation: str, fn: Callable[[UnitOfWork], T]) -> T:
        """Run ``fn`` in a unit of work and return its result."""
        with self.unit_of_work(operation) as uow:
            return fn(uow)

    @contextmanager
    def read_only(self) -> Iterator[UnitOfWork]:
        """A unit of work that is always rolled back.  For read models."""
        active = _active_unit.get()
        if active is not None:
            yield active
            return
        session = self._session_factory()
        try:
            yield UnitOfWork(session, self._clock, self._settings)
        finally:
            session.rollback()
            session.close()

    def _apply_lock_timeout(self, session: Session) -> None:
        if session.get_bind().dialect.name != "postgresql":
            return
        timeout_ms = int(self._settings.lock_timeout_seconds * 1000)
        session.execute(text(f"SET LOCAL lock_timeout = {timeout_ms}"))

    @staticmethod
    def _map_integrity_error(operation: str, exc: IntegrityError) -> EquipmentKernelError:
        message = str(exc.orig)
        if "allocation" in message.lower():
            return DuplicateAllocationError(
                exc.params.get("serial_number", "unknown")
                if isinstance(exc.params, dict)
                else "unknown"
            )
        return ConcurrentModificationError(operation, message)

    def _publish(self, events: list[ReceiptTransitionEvent]) -> None:
        for event in events:
            try:
                self._notifier.publish(event)
            except Exception:
                logger.warning(
                    "notification_delivery_failed",
                    extra={"payload": event.to_payload()},
                    exc_info=True,
                )
