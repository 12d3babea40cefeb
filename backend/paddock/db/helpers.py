"""Database helper functions shared by the ledger services"""
import logging
from typing import Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# Dialects whose INSERT supports ON CONFLICT ... DO UPDATE
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def dialect_insert(db: Session, model) -> Optional[object]:
    """Return an ``insert(model)`` construct with ``on_conflict_do_update``.

    Returns None when the bound dialect has no server-side upsert, in which
    case callers fall back to their conditional-write path.
    """
    dialect_name = db.get_bind().dialect.name
    insert_factory = _UPSERT_INSERTS.get(dialect_name)
    if insert_factory is None:
        logger.debug(f"No atomic upsert for dialect {dialect_name}")
        return None
    return insert_factory(model)


def is_transient_store_error(exc: BaseException) -> bool:
    """True for failures where nothing was durably applied and a retry is safe:
    timeouts, lost connections, lock contention."""
    if isinstance(exc, (OperationalError, PoolTimeoutError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return False
