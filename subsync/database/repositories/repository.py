"""
Repository Pattern Base Classes

- BaseRepository: keyed CRUD for any model with an integer ``id``
- Specialized repositories add domain queries (SubscriptionRepository)

Repositories only flush. The caller's unit of work (``get_session()``) decides when to
commit, so a read-modify-write cycle and its version check land in one transaction.
"""

from abc import ABC
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy.orm import Session

from subsync.database.models.model_base import SqlAlchemyModel

ModelType = TypeVar("ModelType", bound=SqlAlchemyModel)


class BaseRepository(Generic[ModelType], ABC):
    """
    Generic keyed storage over one model.

    Example:
        class SubscriptionRepository(BaseRepository[Subscription]):
            def __init__(self, session: Session):
                super().__init__(session, Subscription)
    """

    def __init__(self, session: Session, model: Type[ModelType]):
        self.session = session
        self.model = model

    def get_by_id(self, id: Any) -> Optional[ModelType]:
        """Row with primary key ``id``, or None."""
        return self.session.get(self.model, id)

    def get_all(self, skip: int = 0, limit: int = 100) -> List[ModelType]:
        return (
            self.session.query(self.model)
            .order_by(self.model.id)
            .offset(skip)
            .limit(limit)
            .all()
        )

    def create(self, **kwargs) -> ModelType:
        """
        Insert a row and flush it so ``id`` is assigned.

        Raises:
            IntegrityError: a unique constraint was violated (the session must be rolled back)
        """
        instance = self.model(**kwargs)
        self.session.add(instance)
        self.session.flush()
        return instance

    def delete(self, id: Any) -> bool:
        """Returns False when no row has that id."""
        instance = self.get_by_id(id)
        if instance is None:
            return False
        self.session.delete(instance)
        self.session.flush()
        return True

    def count(self) -> int:
        return self.session.query(self.model).count()
