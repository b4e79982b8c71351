"""Base Models and Mixins"""

import uuid
from sqlalchemy import Column, DateTime, String, Uuid
from sqlalchemy.orm import declared_attr

from agaspay.database import Base
from agaspay.utils.time import get_utc_now


class BaseModel(Base):
    """
    Base model class with common fields for all models.

    Provides:
    - UUID primary key
    - created_at timestamp (naive UTC)
    """
    __abstract__ = True

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime, default=get_utc_now, nullable=False, index=True)


class ConnectionScopedMixin:
    """
    Mixin for rows scoped to one water connection.

    Connection ids are issued by the billing backend (opaque strings), so
    there is no local foreign key.
    """

    @declared_attr
    def connection_id(cls):
        return Column(String(64), nullable=False, index=True)
