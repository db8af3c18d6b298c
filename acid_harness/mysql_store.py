"""PyMySQL binding of the table interface.

The table is stored as one InnoDB row per cell. A put is one transaction, and
a get or a scan is one SELECT, so each observes a single consistent snapshot.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import pymysql
from pymysql.cursors import DictCursor, SSDictCursor

from .store import Put, Row, Scan, StoreError

ER_TABLE_EXISTS_ERROR = 1050

CREATE_TABLE_SQL = (
    "CREATE TABLE `{table}` ("
    "  row_key VARBINARY(255) NOT NULL,"
    "  family VARBINARY(64) NOT NULL,"
    "  qualifier VARBINARY(255) NOT NULL,"
    "  cell_value BLOB,"
    "  PRIMARY KEY (row_key, family, qualifier),"
    "  KEY idx_cell_value (family, qualifier, cell_value(64))"
    ") ENGINE=InnoDB"
)


@dataclass
class DBConfig:
    host: Optional[str]
    port: int
    user: str
    password: Optional[str]
    socket: Optional[str]
    db: Optional[str] = None

    def with_db(self, database: Optional[str]) -> "DBConfig":
        return replace(self, db=database)

    @property
    def target(self) -> str:
        return self.socket or f"{self.host}:{self.port}"


def connect_mysql(
    cfg: DBConfig,
    autocommit: bool,
    *,
    connect_timeout: Optional[int] = None,
    cursorclass: Any = DictCursor,
) -> pymysql.connections.Connection:
    params: Dict[str, object] = {
        "user": cfg.user,
        "password": cfg.password or "",
        "charset": "utf8mb4",
        "autocommit": autocommit,
        "cursorclass": cursorclass,
    }
    if connect_timeout is not None:
        params["connect_timeout"] = connect_timeout
    if cfg.socket:
        params["unix_socket"] = cfg.socket
    else:
        params["host"] = cfg.host
        params["port"] = cfg.port
    conn = pymysql.connect(**params)
    if cfg.db:
        conn.select_db(cfg.db)
    return conn


def _extract_error_code(exc: Exception) -> Optional[int]:
    """Best-effort helper to pull a numeric error code off a DB exception."""
    if exc.args and isinstance(exc.args[0], int):
        return exc.args[0]
    return None


def _placeholders(count: int) -> str:
    return ", ".join(["%s"] * count)


class MySQLTableClient:
    """One connection, owned by one actor thread."""

    def __init__(self, conn: pymysql.connections.Connection, table: str) -> None:
        self._conn = conn
        self.table = table
        self._closed = False

    def _live_conn(self) -> pymysql.connections.Connection:
        if self._closed:
            raise StoreError("Client is closed")
        return self._conn

    def put(self, put: Put) -> None:
        if not put.cells:
            raise StoreError(f"Empty put for row {put.key!r}")
        conn = self._live_conn()
        sql = (
            f"INSERT INTO `{self.table}` (row_key, family, qualifier, cell_value) "
            "VALUES (%s, %s, %s, %s) "
            "ON DUPLICATE KEY UPDATE cell_value = VALUES(cell_value)"
        )
        rows = [(put.key, family, qualifier, value) for family, qualifier, value in put.cells]
        conn.begin()
        try:
            with conn.cursor() as cur:
                cur.executemany(sql, rows)
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def get(self, key: bytes, families: Optional[Sequence[bytes]] = None) -> Optional[Row]:
        conn = self._live_conn()
        sql = f"SELECT family, qualifier, cell_value FROM `{self.table}` WHERE row_key = %s"
        params: List[Any] = [key]
        if families:
            sql += f" AND family IN ({_placeholders(len(families))})"
            params.extend(families)
        sql += " ORDER BY family, qualifier"
        with conn.cursor() as cur:
            cur.execute(sql, params)
            records = cur.fetchall()
        if not records:
            return None
        return Row(key, {(rec["family"], rec["qualifier"]): rec["cell_value"] for rec in records})

    def build_scan_sql(self, scan: Scan) -> Tuple[str, List[Any]]:
        sql = f"SELECT c.row_key, c.family, c.qualifier, c.cell_value FROM `{self.table}` AS c"
        params: List[Any] = []
        if scan.filter is not None:
            sql += (
                f" JOIN `{self.table}` AS f ON f.row_key = c.row_key"
                " AND f.family = %s AND f.qualifier = %s AND f.cell_value = %s"
            )
            params.extend([scan.filter.family, scan.filter.qualifier, scan.filter.value])
        if scan.families:
            sql += f" WHERE c.family IN ({_placeholders(len(scan.families))})"
            params.extend(scan.families)
        sql += " ORDER BY c.row_key, c.family, c.qualifier"
        return sql, params

    def scan(self, scan: Scan) -> Iterator[Row]:
        """Stream matching rows; the result set is read lazily through an unbuffered cursor."""
        conn = self._live_conn()
        sql, params = self.build_scan_sql(scan)
        cur = conn.cursor(SSDictCursor)
        try:
            cur.execute(sql, params)
            for key, records in itertools.groupby(cur, key=lambda rec: rec["row_key"]):
                yield Row(key, {(rec["family"], rec["qualifier"]): rec["cell_value"] for rec in records})
        finally:
            cur.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._conn.close()
        except pymysql.Error:
            logging.debug("Error closing MySQL client connection", exc_info=True)


class MySQLBackend:
    """A database holding the harness table, reached through PyMySQL."""

    def __init__(
        self,
        cfg: DBConfig,
        table: str,
        *,
        connect_timeout: Optional[int] = None,
        flush_statement: Optional[str] = None,
    ) -> None:
        if not cfg.db:
            raise ValueError("MySQLBackend needs a database name")
        self.cfg = cfg
        self.table = table
        self.connect_timeout = connect_timeout
        self.flush_statement = flush_statement or f"FLUSH TABLES `{table}`"
        self._admin_lock = threading.Lock()
        self._admin_conn: Optional[pymysql.connections.Connection] = None

    def _admin(self) -> pymysql.connections.Connection:
        # caller holds self._admin_lock
        if self._admin_conn is None:
            self._admin_conn = connect_mysql(self.cfg, autocommit=True, connect_timeout=self.connect_timeout)
        return self._admin_conn

    def create_table_if_missing(self) -> None:
        with self._admin_lock:
            with self._admin().cursor() as cur:
                try:
                    cur.execute(CREATE_TABLE_SQL.format(table=self.table))
                    logging.info("Created table `%s`.`%s`", self.cfg.db, self.table)
                except pymysql.err.MySQLError as exc:
                    if _extract_error_code(exc) != ER_TABLE_EXISTS_ERROR:
                        raise
                    logging.debug("Table `%s`.`%s` already exists", self.cfg.db, self.table)

    def connect(self) -> MySQLTableClient:
        conn = connect_mysql(self.cfg, autocommit=True, connect_timeout=self.connect_timeout)
        return MySQLTableClient(conn, self.table)

    def flush(self) -> None:
        with self._admin_lock:
            with self._admin().cursor() as cur:
                cur.execute(self.flush_statement)

    def close(self) -> None:
        with self._admin_lock:
            if self._admin_conn is not None:
                try:
                    self._admin_conn.close()
                except pymysql.Error:
                    logging.debug("Error closing MySQL admin connection", exc_info=True)
                self._admin_conn = None


def create_database(cfg: DBConfig, database: str, *, connect_timeout: Optional[int] = None) -> None:
    conn = connect_mysql(cfg.with_db(None), autocommit=True, connect_timeout=connect_timeout)
    try:
        with conn.cursor() as cur:
            cur.execute(
                f"CREATE DATABASE IF NOT EXISTS `{database}` "
                "DEFAULT CHARACTER SET utf8mb4 COLLATE utf8mb4_general_ci"
            )
    finally:
        conn.close()
    logging.info("Created database `%s` on %s", database, cfg.target)


def drop_database(cfg: DBConfig, database: str, *, connect_timeout: Optional[int] = None) -> None:
    conn = connect_mysql(cfg.with_db(None), autocommit=True, connect_timeout=connect_timeout)
    try:
        with conn.cursor() as cur:
            cur.execute(f"DROP DATABASE IF EXISTS `{database}`")
    finally:
        conn.close()
    logging.info("Dropped database `%s` on %s", database, cfg.target)
