"""
Versioned schema migrations.

Each entry is applied once, in order, inside its own transaction and
recorded in schema_migrations. New schema changes are appended to
MIGRATIONS; existing entries are never edited.
"""
import logging
from collections import namedtuple
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, select
from sqlalchemy.engine import Connection, Engine

from authgate import models

logger = logging.getLogger(__name__)

Migration = namedtuple("Migration", ["version", "name", "apply"])

_meta = MetaData()

schema_migrations = Table(
    "schema_migrations",
    _meta,
    Column("version", Integer, primary_key=True),
    Column("name", String(100), nullable=False),
    Column("applied_at", DateTime(timezone=True), nullable=False),
)


def _create_tables(*tables):
    def apply(conn: Connection):
        for table in tables:
            table.create(conn, checkfirst=True)
    return apply


MIGRATIONS = [
    Migration(1, "users_identities_sessions", _create_tables(
        models.User.__table__,
        models.UserIdentity.__table__,
        models.Session.__table__,
    )),
    Migration(2, "profiles", _create_tables(models.Profile.__table__)),
    Migration(3, "magic_link_requests", _create_tables(models.MagicLinkRequest.__table__)),
    Migration(4, "dev_magic_links", _create_tables(models.DevMagicLink.__table__)),
    Migration(5, "avatar_models", _create_tables(models.AvatarModel.__table__)),
]


def applied_versions(conn: Connection) -> set:
    return set(conn.execute(select(schema_migrations.c.version)).scalars())


def apply_migrations(engine: Engine, migrations=None) -> list:
    """
    Apply every migration newer than the recorded versions.
    Returns the versions applied by this call.
    """
    migrations = sorted(migrations or MIGRATIONS, key=lambda m: m.version)

    with engine.begin() as conn:
        schema_migrations.create(conn, checkfirst=True)
        done = applied_versions(conn)

    applied = []
    for migration in migrations:
        if migration.version in done:
            continue
        with engine.begin() as conn:
            logger.debug("Applying migration %s (%s)", migration.version, migration.name)
            migration.apply(conn)
            conn.execute(
                schema_migrations.insert().values(
                    version=migration.version,
                    name=migration.name,
                    applied_at=datetime.now(timezone.utc),
                )
            )
        applied.append(migration.version)

    return applied
