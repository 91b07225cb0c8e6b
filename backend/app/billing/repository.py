"""Persistence layer for account profiles."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterable, Optional

import psycopg2
import psycopg2.errors
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from .exceptions import DuplicateCustomerError, UpstreamError
from .models import AccountProfile, SubscriptionUpdate

try:  # pragma: no cover - resolve connection helper when imported from FastAPI app
    from backend.app_context import get_conn
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ...app_context import get_conn  # type: ignore[no-redef]


PROFILES_DDL = """
CREATE TABLE IF NOT EXISTS profiles (
    id TEXT PRIMARY KEY,
    user_id TEXT,
    email TEXT,
    stripe_customer_id TEXT,
    subscription_tier TEXT,
    subscription_status TEXT,
    subscription_end TIMESTAMPTZ,
    last_event_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE UNIQUE INDEX IF NOT EXISTS profiles_stripe_customer_id_key
    ON profiles (stripe_customer_id)
    WHERE stripe_customer_id IS NOT NULL;
CREATE INDEX IF NOT EXISTS profiles_user_id_idx ON profiles (user_id);
"""


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


def _row_to_profile(row: dict) -> AccountProfile:
    return AccountProfile(
        id=str(row["id"]),
        user_id=row.get("user_id"),
        email=row.get("email"),
        stripe_customer_id=row.get("stripe_customer_id"),
        subscription_tier=row.get("subscription_tier"),
        subscription_status=row.get("subscription_status"),
        subscription_end=row.get("subscription_end"),
        last_event_at=row.get("last_event_at"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresAccountProfileRepository:
    """Concrete repository persisting account profiles in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        try:
            with managed_connection(self._conn) as (connection, _managed):
                with connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
                    yield cursor
        except psycopg2.errors.UniqueViolation as exc:
            raise DuplicateCustomerError("Customer reference is already assigned to another profile") from exc
        except psycopg2.Error as exc:
            raise UpstreamError(f"Account store error: {exc}") from exc

    def ensure_schema(self) -> None:
        with self._cursor() as cursor:
            cursor.execute(PROFILES_DDL)

    def get_profile(self, profile_id: str) -> Optional[AccountProfile]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM profiles
                WHERE id = %s
                LIMIT 1
                """,
                (profile_id,),
            )
            row = cursor.fetchone()
            return _row_to_profile(row) if row else None

    def get_profile_by_user_reference(self, user_reference: str) -> Optional[AccountProfile]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM profiles
                WHERE user_id = %s
                LIMIT 1
                """,
                (user_reference,),
            )
            row = cursor.fetchone()
            return _row_to_profile(row) if row else None

    def assign_customer(
        self,
        profile_id: str,
        *,
        user_id: str,
        email: Optional[str],
        customer_id: str,
    ) -> AccountProfile:
        """Attach ``customer_id`` unless the profile already carries one.

        Returns the stored row, whose reference may differ from
        ``customer_id`` when another request won the race.
        """

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO profiles (id, user_id, email, stripe_customer_id)
                VALUES (%(id)s, %(user_id)s, %(email)s, %(customer_id)s)
                ON CONFLICT (id) DO UPDATE SET
                    user_id = COALESCE(profiles.user_id, EXCLUDED.user_id),
                    email = COALESCE(EXCLUDED.email, profiles.email),
                    stripe_customer_id = COALESCE(profiles.stripe_customer_id, EXCLUDED.stripe_customer_id),
                    updated_at = NOW()
                RETURNING *
                """,
                {
                    "id": profile_id,
                    "user_id": user_id,
                    "email": email,
                    "customer_id": customer_id,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist customer reference")
            return _row_to_profile(row)

    def set_pending_tier(self, profile_id: str, tier: str) -> Optional[AccountProfile]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE profiles
                SET subscription_tier = %s, updated_at = NOW()
                WHERE id = %s
                RETURNING *
                """,
                (tier, profile_id),
            )
            row = cursor.fetchone()
            return _row_to_profile(row) if row else None

    def apply_subscription_state(self, update: SubscriptionUpdate) -> int:
        """Write webhook-derived state onto the profile owning the customer.

        Events older than the stored ``last_event_at`` are ignored. Returns
        the number of rows updated.
        """

        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE profiles
                SET subscription_status = %(status)s,
                    subscription_tier = CASE WHEN %(set_tier)s THEN %(tier)s ELSE subscription_tier END,
                    subscription_end = CASE WHEN %(set_end)s THEN %(subscription_end)s ELSE subscription_end END,
                    last_event_at = GREATEST(last_event_at, %(event_at)s::timestamptz),
                    updated_at = NOW()
                WHERE stripe_customer_id = %(customer_id)s
                  AND (%(event_at)s::timestamptz IS NULL
                       OR last_event_at IS NULL
                       OR last_event_at <= %(event_at)s)
                """,
                {
                    "status": update.status,
                    "set_tier": update.set_tier,
                    "tier": update.tier,
                    "set_end": update.set_subscription_end,
                    "subscription_end": update.subscription_end,
                    "event_at": update.event_at,
                    "customer_id": update.customer_id,
                },
            )
            return cursor.rowcount


__all__ = ["PROFILES_DDL", "PostgresAccountProfileRepository", "managed_connection"]
