"""Shared fixtures: a throwaway SQLite database and a local object store."""
import pytest
import pytest_asyncio

from clipforge.config import settings
from clipforge.db.database import Base, build_engine, build_session_maker
from clipforge.services.container import StageServices
from clipforge.storage import LocalObjectStore


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    import clipforge.models  # noqa: F401

    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_maker(engine)
    await engine.dispose()


@pytest.fixture
def store(tmp_path):
    return LocalObjectStore(tmp_path / "storage")


@pytest.fixture
def services(session_maker, store, tmp_path):
    return StageServices(
        settings=settings,
        store=store,
        session_maker=session_maker,
        work_dir=tmp_path / "work",
    )
