import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from storefront.core.errors import ConcurrencyConflictError, StaleStateError
from storefront.repositories.audit import AuditLogRepository
from storefront.repositories.components import ComponentRepository
from storefront.repositories.configurations import ConfigurationRepository
from storefront.repositories.orders import OrderRepository
from storefront.repositories.promo_codes import PromoCodeRepository
from storefront.repositories.repairs import RepairRepository
from storefront.repositories.reservations import StockReservationRepository

logger = logging.getLogger(__name__)

# deadlock_detected, serialization_failure
LOCK_CONFLICT_SQLSTATES = ("40P01", "40001")
LOCK_CONFLICT_MESSAGES = ("deadlock detected", "could not serialize access", "database is locked")


def is_lock_conflict(error: DBAPIError) -> bool:
    orig = error.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in LOCK_CONFLICT_SQLSTATES:
        return True
    message = str(orig).lower()
    return any(fragment in message for fragment in LOCK_CONFLICT_MESSAGES)


class TransactionScope:
    """One open database transaction and the repositories bound to it.

    Every multi-write operation receives a scope, so everything it touches
    commits or rolls back together.
    """

    def __init__(self, session: Session):
        self.session = session
        self.components = ComponentRepository(session)
        self.configurations = ConfigurationRepository(session)
        self.orders = OrderRepository(session)
        self.promo_codes = PromoCodeRepository(session)
        self.repairs = RepairRepository(session)
        self.reservations = StockReservationRepository(session)
        self.audit_log = AuditLogRepository(session)

    def flush(self, entity_type: str = "Entity", entity_id: Optional[object] = None) -> None:
        """Flush pending writes, turning a failed version check into StaleStateError"""
        try:
            self.session.flush()
        except StaleDataError as e:
            raise StaleStateError(entity_type, entity_id) from e


class UnitOfWork:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @contextmanager
    def transaction(self) -> Iterator[TransactionScope]:
        session = self.session_factory()
        try:
            yield TransactionScope(session)
            session.commit()
        except StaleDataError as e:
            session.rollback()
            logger.warning(f"Optimistic version check failed: {e}")
            raise StaleStateError("Entity", None) from e
        except DBAPIError as e:
            session.rollback()
            if not is_lock_conflict(e):
                raise
            logger.warning(f"Transaction aborted by the database: {e.orig}")
            raise ConcurrencyConflictError() from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
