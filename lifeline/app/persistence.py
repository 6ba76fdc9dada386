"""Shared Postgres plumbing for the engine repositories."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Mapping, Optional, Tuple, TypeVar

import psycopg2
import psycopg2.errors
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..app_context import get_conn
from .errors import ConflictError, PersistenceError

RepositoryT = TypeVar("RepositoryT", bound="PostgresRepository")


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None) -> Iterator[Tuple[PgConnection, bool]]:
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


class PostgresRepository:
    """Base class giving repositories a cursor helper and scoped exclusive sections."""

    conflict_message = "Record already exists"
    conflict_messages: Mapping[str, str] = {}

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterator[PgCursor]:
        try:
            with managed_connection(self._conn) as (connection, managed):
                cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
                try:
                    yield cursor
                    if managed:
                        connection.commit()
                except Exception:
                    if managed:
                        connection.rollback()
                    raise
                finally:
                    cursor.close()
        except psycopg2.errors.UniqueViolation as exc:
            constraint = exc.diag.constraint_name
            message = self.conflict_messages.get(constraint or "", self.conflict_message)
            raise ConflictError(message, detail={"constraint": constraint}) from exc
        except psycopg2.Error as exc:
            raise PersistenceError(f"Database operation failed: {exc.pgerror or exc}") from exc

    @contextmanager
    def exclusive(self: RepositoryT, key: str) -> Iterator[RepositoryT]:
        """Serialize work on ``key`` across processes for one transaction.

        The yielded repository shares a single connection so every read and
        write issued through it commits or rolls back together, and the
        advisory lock is released when that transaction ends.
        """

        try:
            with managed_connection(self._conn) as (connection, _managed):
                with connection.cursor() as cursor:
                    cursor.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (key,))
                yield type(self)(conn=connection)
        except psycopg2.Error as exc:
            raise PersistenceError(f"Database operation failed: {exc.pgerror or exc}") from exc


__all__ = ["PostgresRepository", "managed_connection"]
