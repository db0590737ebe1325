"""
Module: equipment_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/ (for DTOs).  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors never call session.add(), session.delete(),
      session.commit(), or session.flush().
    - Selectors return frozen DTOs, not ORM instances.
    - The caller owns the session and its transaction scope.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from equipment_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Accepts a Session from the caller, performs read-only queries and
        returns DTOs or computed values.
    """

    def __init__(self, session: Session):
        self.session = session
