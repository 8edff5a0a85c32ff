"""
BaseService -- abstract base for kernel services.

Responsibility:
    Common constructor and session-handling contract. Concrete services
    receive a SQLAlchemy ``Session`` and use ``session.flush()``, never
    ``session.commit()``. The caller owns the transaction.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
    """

    def __init__(self, session: Session):
        self.session = session
