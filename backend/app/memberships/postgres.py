"""PostgreSQL persistence for plans and memberships."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterable, Optional, Sequence

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from .exceptions import ConcurrentModificationError, NotFoundError
from .models import Membership, MembershipStatus, Plan

try:  # pragma: no cover - resolve connection helper when imported from FastAPI app
    from backend.app_context import get_conn
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ...app_context import get_conn  # type: ignore[no-redef]


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS membership_plans (
    contractor_id TEXT NOT NULL,
    plan_id TEXT NOT NULL,
    active BOOLEAN NOT NULL DEFAULT TRUE,
    member_count INTEGER NOT NULL DEFAULT 0 CHECK (member_count >= 0),
    version INTEGER NOT NULL DEFAULT 0,
    document JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (contractor_id, plan_id)
);

CREATE TABLE IF NOT EXISTS memberships (
    contractor_id TEXT NOT NULL,
    membership_id TEXT NOT NULL,
    plan_id TEXT NOT NULL,
    customer_id TEXT,
    status TEXT NOT NULL,
    end_date TIMESTAMPTZ NOT NULL,
    version INTEGER NOT NULL DEFAULT 0,
    document JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (contractor_id, membership_id)
);

CREATE INDEX IF NOT EXISTS memberships_status_end_idx
    ON memberships (contractor_id, status, end_date);
CREATE INDEX IF NOT EXISTS memberships_customer_idx
    ON memberships (contractor_id, customer_id);
"""

# Columns owned by the table rather than the JSON document.
_PLAN_ROW_FIELDS = {"member_count", "version"}
_MEMBERSHIP_ROW_FIELDS = {"version"}


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
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


def _row_to_plan(row: Dict[str, Any]) -> Plan:
    return Plan.model_validate(
        {
            **row["document"],
            "member_count": int(row["member_count"]),
            "version": int(row["version"]),
        }
    )


def _row_to_membership(row: Dict[str, Any]) -> Membership:
    return Membership.model_validate({**row["document"], "version": int(row["version"])})


def _plan_document(plan: Plan) -> psycopg2.extras.Json:
    return psycopg2.extras.Json(plan.model_dump(mode="json", exclude=_PLAN_ROW_FIELDS))


def _membership_document(membership: Membership) -> psycopg2.extras.Json:
    return psycopg2.extras.Json(membership.model_dump(mode="json", exclude=_MEMBERSHIP_ROW_FIELDS))


class PostgresMembershipRepository:
    """Concrete repository persisting membership documents in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
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

    def ensure_schema(self) -> None:
        with self._cursor() as cursor:
            cursor.execute(SCHEMA_SQL)

    def get_plan(self, contractor_id: str, plan_id: str) -> Optional[Plan]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM membership_plans
                WHERE contractor_id = %s AND plan_id = %s
                LIMIT 1
                """,
                (contractor_id, plan_id),
            )
            row = cursor.fetchone()
            return _row_to_plan(row) if row else None

    def list_plans(self, contractor_id: str, *, include_inactive: bool = False) -> Sequence[Plan]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM membership_plans
                WHERE contractor_id = %s AND (%s OR active)
                ORDER BY created_at DESC
                """,
                (contractor_id, include_inactive),
            )
            rows = cursor.fetchall() or []
            return [_row_to_plan(row) for row in rows]

    def create_plan(self, plan: Plan) -> Plan:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO membership_plans (
                    contractor_id,
                    plan_id,
                    active,
                    member_count,
                    version,
                    document,
                    created_at
                )
                VALUES (%(contractor_id)s, %(plan_id)s, %(active)s, %(member_count)s,
                        %(version)s, %(document)s, %(created_at)s)
                RETURNING *
                """,
                {
                    "contractor_id": plan.contractor_id,
                    "plan_id": plan.id,
                    "active": plan.active,
                    "member_count": plan.member_count,
                    "version": plan.version,
                    "document": _plan_document(plan),
                    "created_at": plan.created_at,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist membership plan")
            return _row_to_plan(row)

    def save_plan(self, plan: Plan, *, expected_version: int) -> Plan:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE membership_plans
                SET active = %(active)s,
                    document = %(document)s,
                    version = version + 1,
                    updated_at = NOW()
                WHERE contractor_id = %(contractor_id)s
                  AND plan_id = %(plan_id)s
                  AND version = %(expected_version)s
                RETURNING *
                """,
                {
                    "active": plan.active,
                    "document": _plan_document(plan),
                    "contractor_id": plan.contractor_id,
                    "plan_id": plan.id,
                    "expected_version": expected_version,
                },
            )
            row = cursor.fetchone()
            if row:
                return _row_to_plan(row)
            self._raise_write_conflict(
                cursor,
                table="membership_plans",
                id_column="plan_id",
                contractor_id=plan.contractor_id,
                document_id=plan.id,
                expected_version=expected_version,
            )

    def get_membership(self, contractor_id: str, membership_id: str) -> Optional[Membership]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM memberships
                WHERE contractor_id = %s AND membership_id = %s
                LIMIT 1
                """,
                (contractor_id, membership_id),
            )
            row = cursor.fetchone()
            return _row_to_membership(row) if row else None

    def list_memberships(
        self,
        contractor_id: str,
        *,
        status: Optional[MembershipStatus] = None,
        customer_id: Optional[str] = None,
    ) -> Sequence[Membership]:
        clauses = ["contractor_id = %s"]
        params: list[Any] = [contractor_id]
        if status is not None:
            clauses.append("status = %s")
            params.append(status.value)
        if customer_id is not None:
            clauses.append("customer_id = %s")
            params.append(customer_id)

        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT *
                FROM memberships
                WHERE {" AND ".join(clauses)}
                ORDER BY created_at DESC
                """,
                tuple(params),
            )
            rows = cursor.fetchall() or []
            return [_row_to_membership(row) for row in rows]

    def insert_membership(self, membership: Membership, *, member_count_delta: int = 1) -> Membership:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO memberships (
                    contractor_id,
                    membership_id,
                    plan_id,
                    customer_id,
                    status,
                    end_date,
                    version,
                    document,
                    created_at
                )
                VALUES (%(contractor_id)s, %(membership_id)s, %(plan_id)s, %(customer_id)s,
                        %(status)s, %(end_date)s, %(version)s, %(document)s, %(created_at)s)
                RETURNING *
                """,
                {
                    "contractor_id": membership.contractor_id,
                    "membership_id": membership.id,
                    "plan_id": membership.plan_id,
                    "customer_id": membership.customer_id,
                    "status": membership.status.value,
                    "end_date": membership.end_date,
                    "version": membership.version,
                    "document": _membership_document(membership),
                    "created_at": membership.created_at,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist membership")
            self._adjust_member_count(cursor, membership.contractor_id, membership.plan_id, member_count_delta)
            return _row_to_membership(row)

    def save_membership(
        self,
        membership: Membership,
        *,
        expected_version: int,
        member_count_delta: int = 0,
    ) -> Membership:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE memberships
                SET status = %(status)s,
                    customer_id = %(customer_id)s,
                    end_date = %(end_date)s,
                    document = %(document)s,
                    version = version + 1,
                    updated_at = NOW()
                WHERE contractor_id = %(contractor_id)s
                  AND membership_id = %(membership_id)s
                  AND version = %(expected_version)s
                RETURNING *
                """,
                {
                    "status": membership.status.value,
                    "customer_id": membership.customer_id,
                    "end_date": membership.end_date,
                    "document": _membership_document(membership),
                    "contractor_id": membership.contractor_id,
                    "membership_id": membership.id,
                    "expected_version": expected_version,
                },
            )
            row = cursor.fetchone()
            if not row:
                self._raise_write_conflict(
                    cursor,
                    table="memberships",
                    id_column="membership_id",
                    contractor_id=membership.contractor_id,
                    document_id=membership.id,
                    expected_version=expected_version,
                )
            self._adjust_member_count(cursor, membership.contractor_id, membership.plan_id, member_count_delta)
            return _row_to_membership(row)

    def list_contractor_ids(self) -> Sequence[str]:
        with self._cursor() as cursor:
            cursor.execute("SELECT DISTINCT contractor_id FROM memberships ORDER BY contractor_id")
            rows = cursor.fetchall() or []
            return [row["contractor_id"] for row in rows]

    def _adjust_member_count(self, cursor: PgCursor, contractor_id: str, plan_id: str, delta: int) -> None:
        if not delta:
            return
        cursor.execute(
            """
            UPDATE membership_plans
            SET member_count = GREATEST(member_count + %s, 0),
                updated_at = NOW()
            WHERE contractor_id = %s AND plan_id = %s
            """,
            (delta, contractor_id, plan_id),
        )

    def _raise_write_conflict(
        self,
        cursor: PgCursor,
        *,
        table: str,
        id_column: str,
        contractor_id: str,
        document_id: str,
        expected_version: int,
    ) -> None:
        cursor.execute(
            f"SELECT version FROM {table} WHERE contractor_id = %s AND {id_column} = %s",
            (contractor_id, document_id),
        )
        if cursor.fetchone() is None:
            raise NotFoundError(message="Document not found", detail={id_column: document_id})
        raise ConcurrentModificationError(
            message="Document was modified concurrently",
            detail={id_column: document_id, "expected_version": expected_version},
        )


__all__ = ["PostgresMembershipRepository", "SCHEMA_SQL"]
