import logging
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import KeyValueStoreError
from app.models.kv_entry import KVEntry

logger = logging.getLogger(__name__)


class KeyValueStore:
    """Flat string store with prefix listing. Writes overwrite, deletes are idempotent."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def list(self, prefix: str) -> List[str]:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


def _like_pattern(prefix: str) -> str:
    # "resume:*" and "resume:" select the same keys
    prefix = prefix[:-1] if prefix.endswith("*") else prefix
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"{escaped}%"


class SqlKeyValueStore(KeyValueStore):
    """Key-value namespace backed by the kv_entries table, one namespace per user."""

    def __init__(self, session_factory: Callable[[], Session], namespace: str):
        self.session_factory = session_factory
        self.namespace = namespace

    def _query(self, db: Session, key: str):
        return db.query(KVEntry).filter(KVEntry.namespace == self.namespace, KVEntry.key == key)

    def get(self, key: str) -> Optional[str]:
        try:
            with self.session_factory() as db:
                entry = self._query(db, key).first()
                return entry.value if entry else None
        except SQLAlchemyError as e:
            raise KeyValueStoreError(f"Failed to read key {key}: {e}") from e

    def set(self, key: str, value: str) -> None:
        with self.session_factory() as db:
            try:
                entry = self._query(db, key).first()
                if entry:
                    entry.value = value
                else:
                    db.add(KVEntry(namespace=self.namespace, key=key, value=value))
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise KeyValueStoreError(f"Failed to write key {key}: {e}") from e

    def list(self, prefix: str) -> List[str]:
        try:
            with self.session_factory() as db:
                rows = (
                    db.query(KVEntry.key)
                    .filter(
                        KVEntry.namespace == self.namespace,
                        KVEntry.key.like(_like_pattern(prefix), escape="\\"),
                    )
                    .order_by(KVEntry.id)
                    .all()
                )
                return [row.key for row in rows]
        except SQLAlchemyError as e:
            raise KeyValueStoreError(f"Failed to list keys under {prefix}: {e}") from e

    def delete(self, key: str) -> None:
        with self.session_factory() as db:
            try:
                self._query(db, key).delete(synchronize_session=False)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise KeyValueStoreError(f"Failed to delete key {key}: {e}") from e
