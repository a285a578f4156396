"""
Supabase service for DispatchDesk
Generic CRUD/query access to the hosted datastore, with a direct
PostgreSQL fallback when the Supabase client is unavailable
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import psycopg2
from psycopg2 import sql
from psycopg2.extras import Json, RealDictCursor
from supabase import Client, create_client

from dispatchdesk.config import Settings
from dispatchdesk.errors import Unauthenticated, UpstreamUnavailable

logger = logging.getLogger(__name__)

# (column, op, value); op is one of eq, neq, gte, lte, in, is_null
Filter = Tuple[str, str, Any]

_SQL_OPS = {"eq": "=", "neq": "<>", "gte": ">=", "lte": "<="}


class SupabaseService:
    """Service for Supabase database operations.

    Built once at startup and injected into every component that
    reads or writes persisted state.
    """

    def __init__(self, settings: Settings):
        self.supabase_url = settings.supabase_url
        self.supabase_key = settings.supabase_service_key or settings.supabase_anon_key
        self.database_url = settings.database_url
        self.client: Optional[Client] = None

        # Try Supabase client first, fallback to direct PostgreSQL
        if self.supabase_url and self.supabase_key:
            try:
                self.client = create_client(self.supabase_url, self.supabase_key)
                logger.info("Supabase client initialized successfully")
                self.use_direct_connection = False
            except Exception as e:
                logger.warning(f"Supabase client failed, falling back to direct connection: {e}")
                self.use_direct_connection = True
        else:
            self.use_direct_connection = True

        if self.use_direct_connection and not self.database_url:
            raise ValueError("Either SUPABASE_URL/SERVICE_ROLE_KEY or DATABASE_URL must be set in environment variables")

        if self.use_direct_connection:
            logger.info("Using direct PostgreSQL connection")
        else:
            logger.info("Using Supabase client")

    # =====================
    # Generic operations
    # =====================
    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        *,
        order_by: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Fetch rows matching every filter."""

        def via_client():
            query = self._apply_filters(self.client.table(table).select("*"), filters)
            if order_by:
                query = query.order(order_by, desc=desc)
            if limit:
                query = query.limit(limit)
            return query.execute().data or []

        def via_direct():
            where, params = self._where(filters)
            statement = sql.SQL("SELECT * FROM {}").format(sql.Identifier(table)) + where
            if order_by:
                statement += sql.SQL(" ORDER BY {} {}").format(
                    sql.Identifier(order_by), sql.SQL("DESC" if desc else "ASC")
                )
            if limit:
                statement += sql.SQL(" LIMIT %s")
                params.append(limit)
            return self._fetch(statement, params)

        return await self._run(f"select {table}", via_client, via_direct)

    async def insert(self, table: str, rows: Union[Dict[str, Any], List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
        """Insert one or many rows and return them as stored."""
        rows = [rows] if isinstance(rows, dict) else list(rows)
        if not rows:
            return []

        def via_client():
            return self.client.table(table).insert(rows).execute().data or []

        def via_direct():
            columns = list(rows[0].keys())
            values = sql.SQL(", ").join(
                sql.SQL("({})").format(sql.SQL(", ").join(sql.Placeholder() * len(columns)))
                for _ in rows
            )
            statement = sql.SQL("INSERT INTO {} ({}) VALUES {} RETURNING *").format(
                sql.Identifier(table),
                sql.SQL(", ").join(map(sql.Identifier, columns)),
                values,
            )
            params = [self._adapt(row.get(c)) for row in rows for c in columns]
            return self._fetch(statement, params)

        return await self._run(f"insert {table}", via_client, via_direct)

    async def update(self, table: str, changes: Dict[str, Any], filters: Sequence[Filter]) -> List[Dict[str, Any]]:
        """Update matching rows; returns the rows that were changed."""

        def via_client():
            query = self._apply_filters(self.client.table(table).update(changes), filters)
            return query.execute().data or []

        def via_direct():
            assignments = sql.SQL(", ").join(
                sql.SQL("{} = %s").format(sql.Identifier(c)) for c in changes
            )
            where, params = self._where(filters)
            statement = (
                sql.SQL("UPDATE {} SET ").format(sql.Identifier(table))
                + assignments
                + where
                + sql.SQL(" RETURNING *")
            )
            return self._fetch(statement, [self._adapt(v) for v in changes.values()] + params)

        return await self._run(f"update {table}", via_client, via_direct)

    async def delete(self, table: str, filters: Sequence[Filter]) -> List[Dict[str, Any]]:
        """Delete matching rows; returns the deleted rows."""
        if not filters:
            raise ValueError("Refusing to delete without filters")

        def via_client():
            query = self._apply_filters(self.client.table(table).delete(), filters)
            return query.execute().data or []

        def via_direct():
            where, params = self._where(filters)
            statement = sql.SQL("DELETE FROM {}").format(sql.Identifier(table)) + where + sql.SQL(" RETURNING *")
            return self._fetch(statement, params)

        return await self._run(f"delete {table}", via_client, via_direct)

    async def rpc(self, function: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Call a database function and return its rows."""

        def via_client():
            data = self.client.rpc(function, params).execute().data
            if data is None:
                return []
            return data if isinstance(data, list) else [data]

        def via_direct():
            args = sql.SQL(", ").join(
                sql.SQL("{} => %s").format(sql.Identifier(k)) for k in params
            )
            statement = sql.SQL("SELECT * FROM {}({})").format(sql.Identifier(function), args)
            return self._fetch(statement, [self._adapt(v) for v in params.values()])

        return await self._run(f"rpc {function}", via_client, via_direct)

    async def get_user_id(self, access_token: str) -> str:
        """Resolve a bearer token to a user id via Supabase Auth."""
        if self.use_direct_connection or not self.client:
            raise Unauthenticated("Authentication requires the Supabase client")
        try:
            response = await asyncio.to_thread(self.client.auth.get_user, access_token)
        except Exception as e:
            logger.warning(f"Token verification failed: {e}")
            raise Unauthenticated("Invalid or expired session")
        user = getattr(response, "user", None)
        if not user:
            raise Unauthenticated("Invalid or expired session")
        return str(user.id)

    # =====================
    # Helpers
    # =====================
    async def _run(self, label: str, via_client: Callable[[], Any], via_direct: Callable[[], Any]) -> Any:
        try:
            if not self.use_direct_connection:
                return await asyncio.to_thread(via_client)
            return await asyncio.to_thread(via_direct)
        except Exception as e:
            logger.error(f"Error during {label}: {e}")
            if not self.use_direct_connection and self.database_url and "Invalid API key" in str(e):
                self.use_direct_connection = True
                return await self._run(label, via_client, via_direct)
            raise UpstreamUnavailable("persistence", f"Datastore error during {label}") from e

    @staticmethod
    def _apply_filters(query, filters: Sequence[Filter]):
        for column, op, value in filters:
            if op == "in":
                query = query.in_(column, list(value))
            elif op == "is_null":
                query = query.is_(column, "null")
            else:
                query = getattr(query, op)(column, value)
        return query

    def _where(self, filters: Sequence[Filter]) -> Tuple[sql.Composable, List[Any]]:
        if not filters:
            return sql.SQL(""), []
        clauses, params = [], []
        for column, op, value in filters:
            if op == "in":
                clauses.append(sql.SQL("{} = ANY(%s)").format(sql.Identifier(column)))
                params.append(list(value))
            elif op == "is_null":
                clauses.append(sql.SQL("{} IS NULL").format(sql.Identifier(column)))
            else:
                clauses.append(sql.SQL("{} {} %s").format(sql.Identifier(column), sql.SQL(_SQL_OPS[op])))
                params.append(self._adapt(value))
        return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(clauses), params

    @staticmethod
    def _adapt(value: Any) -> Any:
        return Json(value) if isinstance(value, dict) else value

    def _fetch(self, statement: sql.Composable, params: List[Any]) -> List[Dict[str, Any]]:
        with psycopg2.connect(self.database_url) as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(statement, params)
                rows = cur.fetchall() if cur.description else []
                return [dict(r) for r in rows]
