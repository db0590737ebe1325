"""
BaseService -- abstract base for write-side kernel services.

Responsibility:
    Common constructor and session contract for every service that
    mutates engine tables.  Services use ``session.flush()``, never
    ``session.commit()``.

Architecture position:
    Kernel > Services.  Concrete services are wired onto one session by a
    UnitOfWork (``transaction_coordinator.py``), which owns commit and
    rollback.

Failure modes:
    - A subclass that commits on its own breaks the all-or-nothing
      guarantee of multi-step operations (approve, scan-in, return).
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from equipment_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and flushes
        within the active transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide query-only read models; those belong in
          ``equipment_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
