# tests/test_store.py
"""Unit tests for the SQLAlchemy-backed state store."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import threading
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from alarmserver.database import create_tables
from alarmserver.services.store import SqlStore


@pytest.fixture
def store(tmp_path):
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool,
    )
    create_tables(bind=engine)
    return SqlStore(sessionmaker(bind=engine, autoflush=False), str(tmp_path))


class TestSqlStore:

    @pytest.mark.asyncio
    async def test_ensure_object_is_idempotent(self, store):
        descriptor = {"type": "device", "common": {"name": "Garage"}}
        assert await store.ensure_object("AABB", descriptor) is True
        assert await store.ensure_object("AABB", {"type": "device", "common": {"name": "Other"}}) is False

        found = await store.query_foreign_objects("AABB", "device")
        assert found == {"AABB": descriptor}

    @pytest.mark.asyncio
    async def test_set_state_and_read_back(self, store):
        await store.set_state("AABB.VMD", True, ack=True)
        assert await store.get_state("AABB.VMD") is True
        await store.set_state("info.connection", "Garage,Door", ack=True)
        assert await store.get_state("info.connection") == "Garage,Door"
        assert await store.get_state("missing") is None

    @pytest.mark.asyncio
    async def test_set_state_if_changed(self, store):
        assert await store.set_state_if_changed("AABB.VMD", True) is True
        assert await store.set_state_if_changed("AABB.VMD", True) is False
        assert await store.set_state_if_changed("AABB.VMD", False) is True
        assert await store.get_state("AABB.VMD") is False

    @pytest.mark.asyncio
    async def test_query_by_pattern_and_type(self, store):
        await store.ensure_object("site1.AABB", {"type": "device", "common": {"name": "Garage"}})
        await store.ensure_object("site1.AABB_X", {"type": "device", "common": {"name": "Wrong"}})
        await store.ensure_object("site2.AABB", {"type": "channel", "common": {"name": "Not a device"}})

        found = await store.query_foreign_objects("*.AABB", "device")
        assert list(found) == ["site1.AABB"]

    @pytest.mark.asyncio
    async def test_persist_file(self, store, tmp_path):
        path = await store.persist_file("20240305", "140709123-AABB-VMD.jpg", b"\xff\xd8data")
        assert path == os.path.join(str(tmp_path), "20240305", "140709123-AABB-VMD.jpg")
        with open(path, "rb") as f:
            assert f.read() == b"\xff\xd8data"

    @pytest.mark.asyncio
    async def test_database_work_runs_off_the_event_loop(self, tmp_path):
        engine = create_engine(
            "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool,
        )
        create_tables(bind=engine)
        factory = sessionmaker(bind=engine, autoflush=False)
        threads = []

        def session_factory():
            threads.append(threading.get_ident())
            return factory()

        store = SqlStore(session_factory, str(tmp_path))
        await store.ensure_object("AABB", {"type": "device"})
        await store.set_state("AABB.VMD", True)

        assert len(threads) == 2
        assert threading.get_ident() not in threads
