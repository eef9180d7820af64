"""Base model with common fields"""

import enum
from typing import Type

from sqlalchemy import Column, TIMESTAMP, Enum
from sqlalchemy.dialects.mysql import CHAR
from sqlalchemy.orm import declarative_base
import uuid

from orchestrator.core.clock import utcnow

Base = declarative_base()


def enum_type(enum_cls: Type[enum.Enum], name: str) -> Enum:
    """Column type that stores an enum's values ("one-time") rather than its names"""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


class BaseModel(Base):
    """
    Abstract base model with common fields for all tables.

    Provides:
    - id: UUID primary key
    - created_at: Timestamp of creation
    - updated_at: Timestamp of last update
    """
    __abstract__ = True

    id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    created_at = Column(TIMESTAMP, default=utcnow, nullable=False)
    updated_at = Column(
        TIMESTAMP,
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )
