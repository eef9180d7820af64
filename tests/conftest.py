"""Shared test fixtures for all tests"""

import asyncio
from types import SimpleNamespace
from typing import Dict, List, Optional, Sequence

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from orchestrator.core.database import create_session_factory
from orchestrator.models import Base
from orchestrator.models.catalog import CaseType, TestCaseModel, TestFileModel
from orchestrator.models.test_run import ResultStatus
from orchestrator.schemas.execution import CatalogTestCase, TestCaseResult
from orchestrator.services.execution_dispatcher import ExecutionDispatcher
from orchestrator.services.runners import RunnerAdapter


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Create test database engine (file-backed SQLite shared by all sessions)"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'orchestrator.db'}",
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    """Session factory handed to the dispatcher and scanner"""
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Create test database session"""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Catalog Fixtures
# ============================================================================

async def seed_catalog(session) -> SimpleNamespace:
    """
    Insert a small catalog:

    - an API file with two active cases and one inactive case
    - a LOAD file with one case
    - a UI file with one case
    - an API file whose only case is inactive
    """
    api_file = TestFileModel(name="users.spec.ts", path="tests/api/users.spec.ts", type=CaseType.API)
    load_file = TestFileModel(name="api-load-test.js", path="tests/load/api-load-test.js", type=CaseType.LOAD)
    ui_file = TestFileModel(name="home.spec.ts", path="tests/ui/home.spec.ts", type=CaseType.UI)
    empty_file = TestFileModel(name="retired.spec.ts", path="tests/api/retired.spec.ts", type=CaseType.API)
    session.add_all([api_file, load_file, ui_file, empty_file])
    await session.flush()

    list_users = TestCaseModel(test_file_id=api_file.id, name="lists users", type=CaseType.API)
    create_user = TestCaseModel(test_file_id=api_file.id, name="creates user", type=CaseType.API)
    legacy = TestCaseModel(test_file_id=api_file.id, name="legacy endpoint", type=CaseType.API, active=False)
    load_case = TestCaseModel(test_file_id=load_file.id, name="api load test", type=CaseType.LOAD)
    ui_case = TestCaseModel(test_file_id=ui_file.id, name="homepage renders", type=CaseType.UI)
    retired = TestCaseModel(test_file_id=empty_file.id, name="retired case", type=CaseType.API, active=False)
    session.add_all([list_users, create_user, legacy, load_case, ui_case, retired])
    await session.commit()

    return SimpleNamespace(
        api_file_id=api_file.id,
        load_file_id=load_file.id,
        ui_file_id=ui_file.id,
        empty_file_id=empty_file.id,
        list_users_id=list_users.id,
        create_user_id=create_user.id,
        legacy_id=legacy.id,
        load_case_id=load_case.id,
        ui_case_id=ui_case.id,
    )


@pytest_asyncio.fixture
async def catalog(db_session):
    """Seeded catalog ids"""
    return await seed_catalog(db_session)


# ============================================================================
# Runner Fixtures
# ============================================================================

class StubRunner(RunnerAdapter):
    """
    Runner double: reports each case with the status configured for its name
    (passed by default), optionally after a gate opens or by raising.
    """

    name = "stub"

    def __init__(
        self,
        outcomes: Optional[Dict[str, ResultStatus]] = None,
        error: Optional[Exception] = None,
        gate: Optional[asyncio.Event] = None,
        drop: Sequence[str] = ()
    ):
        super().__init__(workdir=".", timeout_seconds=1.0)
        self.outcomes = outcomes or {}
        self.error = error
        self.gate = gate
        self.drop = set(drop)
        self.calls: List[tuple] = []

    def default_timeout(self) -> float:
        return 1.0

    async def run(
        self,
        file_path: str,
        test_cases: Sequence[CatalogTestCase],
        on_process_started=None
    ) -> List[TestCaseResult]:
        self.calls.append((file_path, [case.name for case in test_cases]))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return [
            TestCaseResult(
                test_case_id=case.id,
                status=self.outcomes.get(case.name, ResultStatus.PASSED),
                duration=5,
                error="assertion failed" if self.outcomes.get(case.name) == ResultStatus.FAILED else None,
            )
            for case in test_cases
            if case.name not in self.drop
        ]


def stub_registry(runner: RunnerAdapter) -> Dict[CaseType, RunnerAdapter]:
    return {case_type: runner for case_type in CaseType}


@pytest.fixture
def make_stub_runner():
    """Factory for StubRunner instances"""
    return StubRunner


@pytest.fixture
def stub_runner():
    return StubRunner()


@pytest.fixture
def make_dispatcher(session_factory):
    """Factory for a dispatcher routing every case type to one runner (or a custom registry)"""
    def build(runner: Optional[RunnerAdapter] = None, runners=None) -> ExecutionDispatcher:
        if runners is None:
            runners = stub_registry(runner or StubRunner())
        return ExecutionDispatcher(session_factory, runners=runners)
    return build


@pytest_asyncio.fixture
async def dispatcher(make_dispatcher, stub_runner):
    """Dispatcher whose every case type goes to the stub runner"""
    return make_dispatcher(stub_runner)


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers",
        "asyncio: mark test as async"
    )
    config.addinivalue_line(
        "markers",
        "property: mark test as property-based test"
    )
