# adapters/database.py - Relational preference backend via SQLAlchemy
import logging
import math
from typing import Any, Callable, List, Optional, Sequence

from sqlalchemy import Float, String, create_engine, delete, func, literal, select, text
from sqlalchemy.engine import Engine, Result
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from config import settings
from domain.errors import BackendError, InvalidArgumentError, NotFoundError
from domain.iteration import ItemRowIterator, UserGroupingIterator
from domain.models import DEFAULT_FACTORY, DataModel, EntityFactory, Item, Preference, PreferenceRow, User

logger = logging.getLogger(__name__)

DEFAULT_PREFERENCE_TABLE = "taste_preferences"


# SQLAlchemy Models
class Base(DeclarativeBase):
    pass


class PreferenceModel(Base):
    __tablename__ = DEFAULT_PREFERENCE_TABLE

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True, index=True)
    item_id: Mapped[str] = mapped_column(String(255), primary_key=True, index=True)
    preference: Mapped[float] = mapped_column(Float, nullable=False)

    def to_row(self) -> PreferenceRow:
        return PreferenceRow(item_id=self.item_id, value=self.preference, user_id=self.user_id)


# Database Engine
def create_engine_from_settings(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """Create the engine for DATABASE_URL (or an explicit URL)"""
    url = database_url or settings.DATABASE_URL
    options = {
        "echo": settings.DATABASE_ECHO if echo is None else echo,
        "pool_pre_ping": True,
    }
    # SQLite uses a pool without overflow settings
    if not url.startswith("sqlite"):
        options["pool_size"] = settings.DB_POOL_SIZE
        options["max_overflow"] = settings.DB_MAX_OVERFLOW
    return create_engine(url, **options)


def init_db(engine: Engine) -> None:
    """Create the preference table if it does not exist"""
    Base.metadata.create_all(engine)
    logger.info("✅ Database initialized successfully")


def check_db_health(engine: Engine) -> bool:
    """Check if database is healthy"""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


def _require_key(value: Any, name: str) -> str:
    if value is None:
        raise InvalidArgumentError(f"{name} must not be None")
    return str(value)


def _require_value(value: Any) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise InvalidArgumentError(f"Invalid preference value: {value!r}")
    if not math.isfinite(value):
        raise InvalidArgumentError(f"Invalid preference value: {value}")
    return value


class DatabaseDataModel(DataModel):
    """Data model reading and writing the preference table directly.

    Nothing is cached, so ``refresh`` has nothing to do. User and item
    enumeration stream rows through a connection owned by the returned
    iterator; drain or close the iterator to give the connection back.
    """

    def __init__(self, engine: Engine, factory: Optional[EntityFactory] = None):
        if engine is None:
            raise InvalidArgumentError("engine must not be None")
        self.engine = engine
        self.factory = factory or DEFAULT_FACTORY

    def list_users(self) -> UserGroupingIterator:
        logger.debug("Retrieving all users...")
        stmt = (
            select(PreferenceModel.item_id, PreferenceModel.preference, PreferenceModel.user_id)
            .order_by(PreferenceModel.user_id, PreferenceModel.item_id)
        )
        result, close = self._stream(stmt, "retrieving users")
        rows = (PreferenceRow(item_id, value, user_id) for item_id, value, user_id in result)
        return UserGroupingIterator(rows, self.factory, close=close)

    def get_user(self, user_id: Any) -> User:
        key = _require_key(user_id, "user_id")
        logger.debug(f"Retrieving user ID '{key}'...")
        stmt = (
            select(PreferenceModel.item_id, PreferenceModel.preference)
            .where(PreferenceModel.user_id == key)
            .order_by(PreferenceModel.item_id)
        )
        rows = self._fetch_all(stmt, f"retrieving user '{key}'")
        if not rows:
            raise NotFoundError(f"User {key!r} not found")

        prefs = [self.factory.preference(None, self.factory.item(item_id), value) for item_id, value in rows]
        return self.factory.user(key, prefs)

    def list_items(self) -> ItemRowIterator:
        logger.debug("Retrieving all items...")
        stmt = select(PreferenceModel.item_id).distinct().order_by(PreferenceModel.item_id)
        result, close = self._stream(stmt, "retrieving items")
        return ItemRowIterator(result.scalars(), self.factory, close=close)

    def get_item(self, item_id: Any, assume_exists: bool = False) -> Item:
        key = _require_key(item_id, "item_id")
        if assume_exists:
            return self.factory.item(key)

        logger.debug(f"Retrieving item ID '{key}'...")
        stmt = select(literal(1)).where(PreferenceModel.item_id == key).limit(1)
        if not self._fetch_all(stmt, f"retrieving item '{key}'"):
            raise NotFoundError(f"Item {key!r} not found")
        return self.factory.item(key)

    def get_preferences_for_item(self, item_id: Any) -> List[Preference]:
        item = self.get_item(item_id)
        key = _require_key(item_id, "item_id")
        logger.debug(f"Retrieving preferences for item ID '{key}'...")
        stmt = (
            select(PreferenceModel.item_id, PreferenceModel.preference, PreferenceModel.user_id)
            .where(PreferenceModel.item_id == key)
            .order_by(PreferenceModel.user_id)
        )
        rows = self._fetch_all(stmt, f"retrieving preferences for item '{key}'")
        # Users carry only their identity here; fetch them with get_user for full preferences
        return [
            self.factory.preference(self.factory.user(row_user_id), item, value)
            for _, value, row_user_id in rows
        ]

    def count_users(self) -> int:
        return self._count(PreferenceModel.user_id, "users")

    def count_items(self) -> int:
        return self._count(PreferenceModel.item_id, "items")

    def set_preference(self, user_id: Any, item_id: Any, value: float) -> None:
        user_key = _require_key(user_id, "user_id")
        item_key = _require_key(item_id, "item_id")
        value = _require_value(value)
        logger.debug(f"Setting preference for user '{user_key}', item '{item_key}', value {value}")

        try:
            with Session(self.engine) as session, session.begin():
                session.merge(PreferenceModel(user_id=user_key, item_id=item_key, preference=value))
        except SQLAlchemyError as e:
            logger.warning("Exception while setting preference", exc_info=True)
            raise BackendError("Exception while setting preference", e) from e

    def remove_preference(self, user_id: Any, item_id: Any) -> None:
        user_key = _require_key(user_id, "user_id")
        item_key = _require_key(item_id, "item_id")
        logger.debug(f"Removing preference for user '{user_key}', item '{item_key}'")

        stmt = delete(PreferenceModel).where(
            PreferenceModel.user_id == user_key,
            PreferenceModel.item_id == item_key
        )
        try:
            with self.engine.begin() as conn:
                conn.execute(stmt)
        except SQLAlchemyError as e:
            logger.warning("Exception while removing preference", exc_info=True)
            raise BackendError("Exception while removing preference", e) from e

    def refresh(self) -> None:
        logger.debug("Database model holds no cached state; nothing to refresh")

    def _count(self, column, name: str) -> int:
        logger.debug(f"Retrieving number of {name} in model...")
        stmt = select(func.count(func.distinct(column)))
        try:
            with self.engine.connect() as conn:
                return int(conn.execute(stmt).scalar_one())
        except SQLAlchemyError as e:
            logger.warning(f"Exception while retrieving number of {name}", exc_info=True)
            raise BackendError(f"Exception while retrieving number of {name}", e) from e

    def _fetch_all(self, stmt, what: str) -> Sequence[Any]:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Executing SQL query: {stmt}")
        try:
            with self.engine.connect() as conn:
                return conn.execute(stmt).all()
        except SQLAlchemyError as e:
            logger.warning(f"Exception while {what}", exc_info=True)
            raise BackendError(f"Exception while {what}", e) from e

    def _stream(self, stmt, what: str):
        """Open a connection and cursor that the caller's iterator will own"""
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Executing SQL query: {stmt}")
        conn = None
        try:
            conn = self.engine.connect()
            result = conn.execution_options(stream_results=True).execute(stmt)
        except SQLAlchemyError as e:
            logger.warning(f"Exception while {what}", exc_info=True)
            if conn is not None:
                _close_quietly(conn.close)
            raise BackendError(f"Exception while {what}", e) from e
        return result, _closer(result, conn)

    def __repr__(self) -> str:
        return f"DatabaseDataModel(url={self.engine.url!r})"


def _closer(result: Result, conn) -> Callable[[], None]:
    def close() -> None:
        try:
            result.close()
        finally:
            conn.close()
    return close


def _close_quietly(close: Callable[[], None]) -> None:
    try:
        close()
    except Exception:
        logger.warning("Error while closing database connection", exc_info=True)
