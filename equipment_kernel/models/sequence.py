"""
Module: equipment_kernel.models.sequence
Responsibility: Counter rows backing receipt numbers.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from equipment_kernel.db.base import Base


class SequenceCounter(Base):
    """
    Named counter.

    Each row holds the last value handed out for one sequence; callers lock
    the row (FOR UPDATE) before incrementing.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
