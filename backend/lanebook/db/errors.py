from collections.abc import Iterator
from contextlib import contextmanager

from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from backend.lanebook.core.errors import SlotUnavailable, StoreUnavailable


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Translate driver failures into the engine's error taxonomy.

    A constraint violation means another writer claimed the same lane first;
    anything else from the driver or the pool is an infrastructure fault.
    """
    try:
        yield
    except IntegrityError as exc:
        logger.info("{} lost a write race: {}", operation, getattr(exc, "orig", exc))
        raise SlotUnavailable("Slot already booked") from exc
    except SQLAlchemyError as exc:
        logger.error("{} failed against the store: {}", operation, getattr(exc, "orig", exc))
        raise StoreUnavailable("Database error") from exc
