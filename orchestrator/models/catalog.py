"""Test catalog models

The catalog is populated by test discovery; the orchestrator only reads it.
"""

import enum
from sqlalchemy import Column, String, Boolean, Text, ForeignKey, Index
from sqlalchemy.dialects.mysql import CHAR
from sqlalchemy.orm import relationship

from orchestrator.models.base import BaseModel, enum_type


class CaseType(str, enum.Enum):
    """Declared type of a catalog test, which selects the runner"""
    API = "API"
    LOAD = "LOAD"
    UI = "UI"
    E2E = "E2E"


class TestFileModel(BaseModel):
    """
    Test Files table.

    One row per discovered test source file. All cases in a file share
    the file's type.
    """
    __tablename__ = "test_files"
    __test__ = False

    name = Column(String(255), nullable=False)
    path = Column(String(1024), nullable=False)
    type = Column(enum_type(CaseType, "case_type"), nullable=False)
    suite = Column(String(255), nullable=True)
    status = Column(String(50), nullable=True)

    cases = relationship(
        "TestCaseModel",
        back_populates="test_file",
        cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<TestFileModel(id={self.id}, path={self.path}, type={self.type})>"


class TestCaseModel(BaseModel):
    """
    Test Cases table.

    A case is matched against runner reports by its exact ``name``.
    """
    __tablename__ = "test_cases"
    __test__ = False

    test_file_id = Column(
        CHAR(36),
        ForeignKey("test_files.id", ondelete="CASCADE"),
        nullable=False
    )
    name = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(enum_type(CaseType, "case_type"), nullable=False)
    file_path = Column(String(1024), nullable=True)
    suite = Column(String(255), nullable=True)
    status = Column(String(50), nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    test_file = relationship("TestFileModel", back_populates="cases")

    __table_args__ = (
        Index('idx_test_cases_file_active', 'test_file_id', 'active'),
    )

    def __repr__(self) -> str:
        return f"<TestCaseModel(id={self.id}, name={self.name}, type={self.type})>"
