from __future__ import annotations
import logging
from pathlib import Path
from typing import Callable, List, Tuple, Union

import sqlalchemy as sa
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool

log = logging.getLogger(__name__)

metadata = sa.MetaData()

invoices = sa.Table(
    "invoices",
    metadata,
    sa.Column("id", sa.String(64), primary_key=True),
    sa.Column("customer_name", sa.Text(), nullable=False),
    sa.Column("date", sa.String(10), nullable=False),  # ISO AAAA-MM-JJ
)

line_items = sa.Table(
    "line_items",
    metadata,
    sa.Column(
        "invoice_id",
        sa.String(64),
        sa.ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("description", sa.Text(), nullable=False),
    sa.Column("price", sa.Text()),  # décimal exact en texte, jamais REAL
)

payments = sa.Table(
    "payments",
    metadata,
    sa.Column("id", sa.String(64), primary_key=True),
    sa.Column(
        "invoice_id",
        sa.String(64),
        sa.ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("amount", sa.Text(), nullable=False),
    sa.Column("method", sa.Text(), nullable=False),
    sa.Column("date", sa.String(10), nullable=False),
    sa.Column("reference", sa.Text(), nullable=False, server_default=""),
)

# table technique, hors metadata métier
_version_metadata = sa.MetaData()
schema_version = sa.Table(
    "schema_version",
    _version_metadata,
    sa.Column("version", sa.Integer(), primary_key=True),
)


# ---------------- Engine ---------------- #

def _unicode_lower(value):
    return None if value is None else str(value).lower()


def _enable_sqlite_fk(dbapi_conn, _record) -> None:
    cur = dbapi_conn.cursor()
    try:
        cur.execute("PRAGMA foreign_keys=ON")
    finally:
        cur.close()
    # lower() natif de SQLite ne replie que l'ASCII : "SOCIÉTÉ" resterait "socIÉtÉ"
    dbapi_conn.create_function("lower", 1, _unicode_lower, deterministic=True)


def install_sqlite_pragmas(engine: Engine) -> Engine:
    """Active les clés étrangères (donc les cascades) et un lower() Unicode sur chaque connexion SQLite."""
    if engine.dialect.name == "sqlite" and not sa.event.contains(engine, "connect", _enable_sqlite_fk):
        sa.event.listen(engine, "connect", _enable_sqlite_fk)
    return engine


def create_engine(url: Union[str, sa.URL], *, echo: bool = False) -> Engine:
    u = sa.make_url(url)
    kwargs = {"echo": echo}
    if u.get_backend_name() == "sqlite":
        db = u.database or ""
        if db in ("", ":memory:") or db.startswith("file::memory:"):
            # une seule connexion partagée, sinon chaque connexion voit une base vide
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        else:
            Path(db).parent.mkdir(parents=True, exist_ok=True)
    engine = sa.create_engine(u, **kwargs)
    return install_sqlite_pragmas(engine)


# ---------------- Migrations ---------------- #

def _has_column(conn: Connection, table_name: str, column_name: str) -> bool:
    inspector = sa.inspect(conn)
    if not inspector.has_table(table_name):
        return False
    return column_name in {c["name"] for c in inspector.get_columns(table_name)}


def _v1_create_invoices_and_items(conn: Connection) -> None:
    invoices.create(conn, checkfirst=True)
    line_items.create(conn, checkfirst=True)


def _v2_line_item_position(conn: Connection) -> None:
    # anciennes bases : line_items(invoice_id, description, price) sans ordre stocké
    if not _has_column(conn, "line_items", "position"):
        conn.execute(sa.text("ALTER TABLE line_items ADD COLUMN position INTEGER NOT NULL DEFAULT 0"))


def _v3_create_payments(conn: Connection) -> None:
    payments.create(conn, checkfirst=True)


MIGRATIONS: List[Tuple[int, Callable[[Connection], None]]] = [
    (1, _v1_create_invoices_and_items),
    (2, _v2_line_item_position),
    (3, _v3_create_payments),
]

LATEST_VERSION = MIGRATIONS[-1][0]


def current_version(conn: Connection) -> int:
    if not sa.inspect(conn).has_table(schema_version.name):
        return 0
    return conn.execute(sa.select(sa.func.max(schema_version.c.version))).scalar() or 0


def migrate(engine: Engine) -> int:
    """Applique une fois, dans l'ordre et en transaction, les étapes manquantes. Retourne la version finale."""
    with engine.begin() as conn:
        schema_version.create(conn, checkfirst=True)
        version = current_version(conn)
        for target, step in MIGRATIONS:
            if target <= version:
                continue
            log.info("applying schema migration %d", target)
            step(conn)
            conn.execute(schema_version.insert().values(version=target))
            version = target
    return version
