from __future__ import annotations

import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Iterator

import aiomysql
import aiosqlite
from loguru import logger

from .config import get_settings

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_PLACEHOLDER = re.compile(r"%s")

# Constraint violations raised by either driver.
INTEGRITY_ERRORS = (aiomysql.IntegrityError, aiosqlite.IntegrityError)
_MYSQL_DUPLICATE_ENTRY = 1062

# MySQL migration dialect -> SQLite, applied in order.
_SQLITE_REWRITES: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(pattern, flags=re.IGNORECASE), replacement)
    for pattern, replacement in (
        (r"\s*ENGINE\s*=\s*\w+", ""),
        (r"\s*DEFAULT\s+CHARSET\s*=\s*\w+", ""),
        (r"\s*COLLATE\s*=\s*\w+", ""),
        (r"\s*COMMENT\s+'[^']*'", ""),
        (r"\bINT\s+PRIMARY\s+KEY\s+AUTO_INCREMENT\b", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        (r"\bDATETIME(?:\(\d+\))?", "TEXT"),
        (r"\s*ON\s+UPDATE\s+CURRENT_TIMESTAMP(?:\(\d+\))?", ""),
        (r"\bCURRENT_TIMESTAMP\(\d+\)", "CURRENT_TIMESTAMP"),
        (r"\bTINYINT\(1\)", "INTEGER"),
        (r"\bMEDIUMTEXT\b", "TEXT"),
    )
)


def _iter_statements(script: str) -> Iterator[str]:
    buffer: list[str] = []
    quote: str | None = None
    index = 0
    while index < len(script):
        char = script[index]
        pair = script[index:index + 2]
        if quote:
            buffer.append(char)
            if char == quote:
                if script[index + 1:index + 2] == quote:
                    buffer.append(quote)
                    index += 1
                else:
                    quote = None
            index += 1
            continue
        if pair == "--":
            newline = script.find("\n", index)
            index = len(script) if newline == -1 else newline
            continue
        if pair == "/*":
            closing = script.find("*/", index + 2)
            index = len(script) if closing == -1 else closing + 2
            continue
        if char == ";":
            statement = "".join(buffer).strip()
            if statement:
                yield statement
            buffer = []
        else:
            if char in ("'", '"'):
                quote = char
            buffer.append(char)
        index += 1
    tail = "".join(buffer).strip()
    if tail:
        yield tail


def is_duplicate_key(exc: BaseException) -> bool:
    if isinstance(exc, aiosqlite.IntegrityError):
        return "UNIQUE constraint failed" in str(exc)
    return bool(exc.args) and exc.args[0] == _MYSQL_DUPLICATE_ENTRY


class Database:
    """Async access to MySQL through an ``aiomysql`` pool, or SQLite as a fallback.

    Repositories write MySQL flavoured SQL with ``%s`` placeholders; the SQLite
    path translates placeholders per query and migration DDL per file.
    """

    def __init__(self) -> None:
        self._settings = get_settings()
        self._pool: aiomysql.Pool | None = None
        self._sqlite_conn: aiosqlite.Connection | None = None
        self._use_sqlite = not (
            self._settings.database_host
            and self._settings.database_user
            and self._settings.database_name
        )

    def is_sqlite(self) -> bool:
        return self._use_sqlite

    def is_connected(self) -> bool:
        return self._pool is not None or self._sqlite_conn is not None

    def _get_sqlite_path(self) -> Path:
        configured = self._settings.sqlite_path
        return configured.expanduser() if configured else _PROJECT_ROOT / "ticketsync.db"

    def _get_migrations_dir(self) -> Path:
        return _PROJECT_ROOT / "migrations"

    @staticmethod
    def _to_sqlite_params(sql: str) -> str:
        """Translate the ``%s`` placeholders used by repositories to qmark style."""

        return _PLACEHOLDER.sub("?", sql)

    @staticmethod
    def _adapt_sql_for_sqlite(sql: str) -> str:
        for pattern, replacement in _SQLITE_REWRITES:
            sql = pattern.sub(replacement, sql)
        return sql

    @staticmethod
    def _split_sql_statements(sql: str) -> list[str]:
        """Split a script on semicolons outside quotes and comments."""

        return list(_iter_statements(sql))

    async def connect(self) -> None:
        if self.is_connected():
            return
        if self._use_sqlite:
            await self._open_sqlite()
        else:
            await self._open_mysql_pool()

    async def _open_sqlite(self) -> None:
        path = self._get_sqlite_path()
        logger.info("Opening SQLite database {path}", path=str(path))
        connection = await aiosqlite.connect(str(path))
        connection.row_factory = aiosqlite.Row
        # ON DELETE CASCADE is only honoured with foreign keys enabled.
        await connection.execute("PRAGMA foreign_keys = ON")
        await connection.commit()
        self._sqlite_conn = connection

    async def _open_mysql_pool(self) -> None:
        logger.info("Opening MySQL pool for {host}", host=self._settings.database_host)
        self._pool = await aiomysql.create_pool(
            host=self._settings.database_host,
            user=self._settings.database_user,
            password=self._settings.database_password or "",
            db=self._settings.database_name,
            autocommit=True,
            minsize=1,
            maxsize=10,
            pool_recycle=600,
            init_command="SET time_zone = '+00:00'",
        )

    async def disconnect(self) -> None:
        connection, pool = self._sqlite_conn, self._pool
        self._sqlite_conn = None
        self._pool = None
        if connection is not None:
            await connection.close()
            logger.info("SQLite database closed")
        if pool is not None:
            pool.close()
            await pool.wait_closed()
            logger.info("MySQL pool closed")

    def _sqlite(self) -> aiosqlite.Connection:
        if self._sqlite_conn is None:
            raise RuntimeError("SQLite database not initialised")
        return self._sqlite_conn

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Any]:
        """Yield a pooled MySQL connection, or the shared SQLite connection."""

        if self._use_sqlite:
            yield self._sqlite()
            return
        if self._pool is None:
            raise RuntimeError("Database pool not initialised")
        async with self._pool.acquire() as connection:
            yield connection

    async def _sqlite_write(self, sql: str, params: tuple | None) -> aiosqlite.Cursor:
        connection = self._sqlite()
        cursor = await connection.execute(self._to_sqlite_params(sql), params or ())
        await connection.commit()
        return cursor

    async def execute(self, sql: str, params: tuple | None = None) -> None:
        await self.execute_returning_rowcount(sql, params)

    async def execute_returning_rowcount(self, sql: str, params: tuple | None = None) -> int:
        """Run a write statement and return the number of rows it matched."""

        if self._use_sqlite:
            cursor = await self._sqlite_write(sql, params)
            return max(cursor.rowcount, 0)
        async with self.acquire() as connection:
            async with connection.cursor() as cursor:
                # aiomysql returns the affected row count from execute().
                affected = await cursor.execute(sql, params)
        return int(affected or 0)

    async def execute_returning_lastrowid(self, sql: str, params: tuple | None = None) -> int:
        if self._use_sqlite:
            cursor = await self._sqlite_write(sql, params)
            return int(cursor.lastrowid or 0)
        async with self.acquire() as connection:
            async with connection.cursor() as cursor:
                await cursor.execute(sql, params)
                return int(cursor.lastrowid or 0)

    async def fetch_one(self, sql: str, params: tuple | None = None) -> dict[str, Any] | None:
        rows = await self._fetch(sql, params, limit_one=True)
        return rows[0] if rows else None

    async def fetch_all(self, sql: str, params: tuple | None = None) -> list[dict[str, Any]]:
        return await self._fetch(sql, params, limit_one=False)

    async def _fetch(
        self, sql: str, params: tuple | None, *, limit_one: bool
    ) -> list[dict[str, Any]]:
        if self._use_sqlite:
            cursor = await self._sqlite().execute(self._to_sqlite_params(sql), params or ())
            if limit_one:
                row = await cursor.fetchone()
                return [dict(row)] if row else []
            return [dict(row) for row in await cursor.fetchall()]
        async with self.acquire() as connection:
            async with connection.cursor(aiomysql.DictCursor) as cursor:
                await cursor.execute(sql, params)
                if limit_one:
                    row = await cursor.fetchone()
                    return [row] if row else []
                return list(await cursor.fetchall())

    async def _ensure_mysql_database(self) -> None:
        connection = await aiomysql.connect(
            host=self._settings.database_host,
            user=self._settings.database_user,
            password=self._settings.database_password or "",
            autocommit=True,
        )
        try:
            async with connection.cursor() as cursor:
                await cursor.execute("SET sql_notes = 0")
                await cursor.execute(
                    f"CREATE DATABASE IF NOT EXISTS `{self._settings.database_name}`"
                )
                await cursor.execute("SET sql_notes = 1")
        finally:
            connection.close()

    async def _mysql_lock(self, connection: Any, statement: str, *args: Any) -> Any:
        async with connection.cursor() as cursor:
            await cursor.execute(statement, args)
            row = await cursor.fetchone()
        return row[0] if row else None

    async def _pending_migrations(self, connection: Any) -> list[Path]:
        directory = self._get_migrations_dir()
        if not directory.exists():
            logger.warning("Migrations directory {path} does not exist", path=str(directory))
            return []
        create = "CREATE TABLE IF NOT EXISTS migrations (name VARCHAR(255) PRIMARY KEY)"
        if self._use_sqlite:
            await connection.execute(create)
            await connection.commit()
            cursor = await connection.execute("SELECT name FROM migrations")
            applied = {row[0] for row in await cursor.fetchall()}
        else:
            async with connection.cursor() as cursor:
                await cursor.execute(create)
                await cursor.execute("SELECT name FROM migrations")
                applied = {row[0] for row in await cursor.fetchall()}
        return [path for path in sorted(directory.glob("*.sql")) if path.name not in applied]

    async def _apply(self, connection: Any, path: Path) -> None:
        script = path.read_text(encoding="utf-8")
        if self._use_sqlite:
            for statement in self._split_sql_statements(self._adapt_sql_for_sqlite(script)):
                await connection.execute(statement)
            await connection.execute("INSERT INTO migrations (name) VALUES (?)", (path.name,))
            await connection.commit()
        else:
            async with connection.cursor() as cursor:
                for statement in self._split_sql_statements(script):
                    await cursor.execute(statement)
                await cursor.execute("INSERT INTO migrations (name) VALUES (%s)", (path.name,))
        logger.info("Applied migration {name}", name=path.name)

    async def run_migrations(self) -> None:
        """Apply pending ``migrations/*.sql`` files in name order.

        On MySQL a named lock serialises concurrent workers starting together.
        """
        if not self._use_sqlite:
            await self._ensure_mysql_database()
        await self.connect()

        lock_name = f"{self._settings.database_name or 'ticketsync'}_migration_lock"
        async with self.acquire() as connection:
            if self._use_sqlite:
                for path in await self._pending_migrations(connection):
                    await self._apply(connection, path)
                return

            timeout = self._settings.migration_lock_timeout
            if await self._mysql_lock(connection, "SELECT GET_LOCK(%s, %s)", lock_name, timeout) != 1:
                logger.error("Migration lock {lock} not obtained in {timeout}s", lock=lock_name, timeout=timeout)
                raise RuntimeError("Could not obtain database migration lock")
            try:
                for path in await self._pending_migrations(connection):
                    await self._apply(connection, path)
            finally:
                await self._mysql_lock(connection, "SELECT RELEASE_LOCK(%s)", lock_name)


db = Database()
