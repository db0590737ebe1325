"""
SequenceService -- receipt numbers from locked counter rows.

Responsibility:
    Hands out strictly increasing integers per named sequence, used to
    number receipts (``BR-000001``, ``TR-000001`` ...).  Each receipt type
    has its own counter row.

Architecture position:
    Kernel > Services.  Called by ReceiptStateMachine when a receipt is
    created.

Invariants enforced:
    - The locked counter row is the only source of the next value; an
      aggregate ``max(receipt_number) + 1`` is never used.
    - The increment is visible only once the caller's transaction commits;
      a rollback gives the value back.

Failure modes:
    - IntegrityError on a concurrent first-use of a sequence, handled by a
      savepoint rollback and re-read.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from equipment_kernel.domain.statuses import RECEIPT_NUMBER_PREFIX, ReceiptType
from equipment_kernel.logging_config import get_logger
from equipment_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Transactional named counters.

    Non-goals:
        - Does NOT call ``session.commit()``.
    """

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock the counter row (creating it on first use), increment, return.

        Returns:
            The next value, always > 0.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                # Another transaction created the row first.
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing, or None if never used."""
        return self._session.execute(
            select(SequenceCounter.current_value)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

    def next_receipt_number(self, receipt_type: ReceiptType) -> str:
        """Next human-readable number for a receipt type, e.g. ``BR-000042``."""
        prefix = RECEIPT_NUMBER_PREFIX[receipt_type]
        value = self.next_value(f"receipt_{receipt_type.value}")
        return f"{prefix}-{value:06d}"
