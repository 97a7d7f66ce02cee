# alarmserver/services/store.py
"""
State store used by the alarm pipeline.

The pipeline only depends on the Store protocol below. SqlStore is the
implementation shipped with the server: object definitions and current
values live in two SQLAlchemy tables, and artifacts (XML, snapshots) are
written below STORAGE_DIR.
"""

import asyncio
import json
import os
from datetime import datetime
from typing import Any, Callable, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from alarmserver.exceptions import StoreError
from alarmserver.models.state_object import StateObject
from alarmserver.models.state_value import StateValue
from alarmserver.utils.logger import get_logger

logger = get_logger(__name__)


class Store(Protocol):
    async def ensure_object(self, object_id: str, descriptor: dict) -> bool: ...

    async def set_state(self, state_id: str, value: Any, ack: bool = True) -> None: ...

    async def set_state_if_changed(self, state_id: str, value: Any, ack: bool = True) -> bool: ...

    async def query_foreign_objects(self, pattern: str, object_type: str) -> dict[str, dict]: ...

    async def persist_file(self, relative_dir: str, filename: str, data: bytes) -> str: ...


def _like_pattern(pattern: str) -> str:
    """Glob-style '*' pattern → SQL LIKE pattern."""
    escaped = pattern.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped.replace("*", "%")


class SqlStore:
    """
    Every call opens its own session. The blocking SQLAlchemy and file work
    runs in a worker thread so alarm timers keep firing while it waits.
    """

    def __init__(self, session_factory: Callable[[], Session], storage_dir: str):
        self._session_factory = session_factory
        self.storage_dir = storage_dir

    def _write_value(self, db: Session, state_id: str, value: Any, ack: bool) -> None:
        row = db.get(StateValue, state_id)
        if row is None:
            row = StateValue(id=state_id)
            db.add(row)
        row.value = json.dumps(value)
        row.ack = int(ack)
        row.updated_at = datetime.utcnow()

    async def ensure_object(self, object_id: str, descriptor: dict) -> bool:
        """Create the object unless it exists. Returns True when created."""
        return await asyncio.to_thread(self._ensure_object, object_id, descriptor)

    def _ensure_object(self, object_id: str, descriptor: dict) -> bool:
        db = self._session_factory()
        try:
            if db.get(StateObject, object_id) is not None:
                return False
            db.add(StateObject(
                id=object_id,
                type=descriptor.get("type", "state"),
                descriptor=json.dumps(descriptor),
                created_at=datetime.utcnow(),
            ))
            db.commit()
            logger.debug(f"[STORE] Created object {object_id}")
            return True
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"ensure_object({object_id}) failed: {e}") from e
        finally:
            db.close()

    async def set_state(self, state_id: str, value: Any, ack: bool = True) -> None:
        await asyncio.to_thread(self._set_state, state_id, value, ack)

    def _set_state(self, state_id: str, value: Any, ack: bool) -> None:
        db = self._session_factory()
        try:
            self._write_value(db, state_id, value, ack)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"set_state({state_id}) failed: {e}") from e
        finally:
            db.close()

    async def set_state_if_changed(self, state_id: str, value: Any, ack: bool = True) -> bool:
        """Write only when the stored value differs. Returns True on write."""
        return await asyncio.to_thread(self._set_state_if_changed, state_id, value, ack)

    def _set_state_if_changed(self, state_id: str, value: Any, ack: bool) -> bool:
        db = self._session_factory()
        try:
            row = db.get(StateValue, state_id)
            if row is not None and row.value == json.dumps(value) and bool(row.ack) == ack:
                return False
            self._write_value(db, state_id, value, ack)
            db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"set_state_if_changed({state_id}) failed: {e}") from e
        finally:
            db.close()

    async def get_state(self, state_id: str) -> Optional[Any]:
        return await asyncio.to_thread(self._get_state, state_id)

    def _get_state(self, state_id: str) -> Optional[Any]:
        db = self._session_factory()
        try:
            row = db.get(StateValue, state_id)
            return json.loads(row.value) if row is not None and row.value is not None else None
        except SQLAlchemyError as e:
            raise StoreError(f"get_state({state_id}) failed: {e}") from e
        finally:
            db.close()

    async def query_foreign_objects(self, pattern: str, object_type: str) -> dict[str, dict]:
        return await asyncio.to_thread(self._query_foreign_objects, pattern, object_type)

    def _query_foreign_objects(self, pattern: str, object_type: str) -> dict[str, dict]:
        db = self._session_factory()
        try:
            rows = (
                db.query(StateObject)
                .filter(StateObject.type == object_type)
                .filter(StateObject.id.like(_like_pattern(pattern), escape="\\"))
                .order_by(StateObject.id)
                .all()
            )
            return {row.id: json.loads(row.descriptor) for row in rows}
        except SQLAlchemyError as e:
            raise StoreError(f"query_foreign_objects({pattern}) failed: {e}") from e
        finally:
            db.close()

    async def persist_file(self, relative_dir: str, filename: str, data: bytes) -> str:
        return await asyncio.to_thread(self._persist_file, relative_dir, filename, data)

    def _persist_file(self, relative_dir: str, filename: str, data: bytes) -> str:
        directory = os.path.join(self.storage_dir, relative_dir)
        filepath = os.path.join(directory, filename)
        try:
            os.makedirs(directory, exist_ok=True)
            with open(filepath, "wb") as f:
                f.write(data)
        except OSError as e:
            raise StoreError(f"persist_file({filepath}) failed: {e}") from e
        logger.info(f"[STORE] Saved {filepath} ({len(data)} bytes)")
        return filepath
