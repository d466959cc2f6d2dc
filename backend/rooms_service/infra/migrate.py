"""Apply the bundled SQL migrations to the configured PostgreSQL database."""

from __future__ import annotations

import logging
import time
from importlib import resources
from importlib.resources.abc import Traversable
from typing import Iterable, List, Optional

import psycopg2

from rooms_service.obs import logging as obs_logging
from rooms_service.settings import settings

logger = logging.getLogger(__name__)

MIGRATIONS_PACKAGE = "rooms_service.infra.migrations"

_LEDGER_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
	version TEXT PRIMARY KEY,
	applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""


def migration_version(name: str) -> str:
	"""``0001_rooms.sql`` is recorded as ``0001``."""
	return name.split("_", 1)[0]


def migration_files() -> List[Traversable]:
	"""The packaged ``*.sql`` migrations in apply order."""
	root = resources.files(MIGRATIONS_PACKAGE)
	# A namespace package may resolve to several directories; the first copy of a name wins.
	found: dict[str, Traversable] = {}
	for entry in root.iterdir():
		if entry.is_file() and entry.name.endswith(".sql"):
			found.setdefault(entry.name, entry)
	return [found[name] for name in sorted(found)]


def pending(names: Iterable[str], applied: Iterable[str]) -> List[str]:
	done = set(applied)
	return [name for name in names if migration_version(name) not in done]


def connection_dsn(url: Optional[str] = None, *, ssl: Optional[bool] = None) -> str:
	dsn = url or settings.postgres_url
	use_ssl = settings.postgres_ssl if ssl is None else ssl
	if not use_ssl or "sslmode=" in dsn:
		return dsn
	return f"{dsn}{'&' if '?' in dsn else '?'}sslmode=require"


def connect(dsn: str, *, attempts: int = 30, delay: float = 2.0) -> "psycopg2.extensions.connection":
	for attempt in range(1, attempts + 1):
		try:
			return psycopg2.connect(dsn)
		except psycopg2.OperationalError as exc:
			if attempt == attempts:
				raise
			logger.warning("migrate.db_unavailable", extra={"attempt": attempt, "error": str(exc)})
			time.sleep(delay)
	raise RuntimeError("unreachable")


def apply_all(conn: "psycopg2.extensions.connection") -> List[str]:
	"""Apply every migration not yet in ``schema_migrations``; returns the names applied."""
	files = {entry.name: entry for entry in migration_files()}
	if not files:
		raise RuntimeError(f"no migrations packaged in {MIGRATIONS_PACKAGE}")
	conn.autocommit = True
	applied_now: List[str] = []
	with conn.cursor() as cur:
		cur.execute(_LEDGER_DDL)
		cur.execute("SELECT version FROM schema_migrations")
		done = [row[0] for row in cur.fetchall()]
		for name in pending(files, done):
			cur.execute(files[name].read_text(encoding="utf-8"))
			cur.execute(
				"INSERT INTO schema_migrations (version) VALUES (%s) ON CONFLICT (version) DO NOTHING",
				(migration_version(name),),
			)
			logger.info("migrate.applied", extra={"migration": name})
			applied_now.append(name)
	return applied_now


def main() -> None:
	obs_logging.configure_logging()
	conn = connect(connection_dsn())
	try:
		applied = apply_all(conn)
	except psycopg2.Error:
		logger.exception("migrate.failed")
		raise
	finally:
		conn.close()
	logger.info("migrate.done", extra={"applied": len(applied)})


if __name__ == "__main__":
	main()
