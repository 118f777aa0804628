# services/data_model_service.py - Async access to a blocking data model
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, Dict, List, Optional, TypeVar

from config import Settings, settings as default_settings
from domain.errors import InvalidArgumentError
from domain.iteration import drain
from domain.models import DataModel, Item, Preference, User

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_data_model(config: Settings) -> DataModel:
    """Create the backend selected by DATA_BACKEND"""
    if config.DATA_BACKEND == "database":
        from adapters.database import DatabaseDataModel, create_engine_from_settings, init_db
        engine = create_engine_from_settings(config.DATABASE_URL, config.DATABASE_ECHO)
        init_db(engine)
        return DatabaseDataModel(engine)

    if config.DATA_BACKEND == "file":
        from adapters.file import FileDataModel
        return FileDataModel(
            config.DATA_FILE,
            auto_reload=config.AUTO_RELOAD,
            check_interval_seconds=config.RELOAD_CHECK_INTERVAL_SECONDS
        )

    if config.DATA_BACKEND == "corpus":
        from adapters.corpus import CorpusDataModel
        if not config.CORPUS_DIR:
            raise ValueError("CORPUS_DIR must be set for the corpus backend")
        return CorpusDataModel(config.CORPUS_DIR)

    raise ValueError(f"Unknown DATA_BACKEND: {config.DATA_BACKEND}")


class DataModelService:
    """Runs data model calls on a thread pool so request handlers never block"""

    def __init__(self, model: DataModel, max_workers: int = 4):
        self.model = model
        self.executor = ThreadPoolExecutor(max_workers=max_workers)

    async def _run(self, func: Callable[..., T], *args, **kwargs) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, partial(func, *args, **kwargs))

    def user_key(self, raw_id: str) -> Any:
        try:
            return self.model.factory.user_key(raw_id)
        except (TypeError, ValueError):
            raise InvalidArgumentError(f"Invalid user ID: {raw_id!r}")

    def item_key(self, raw_id: str) -> Any:
        try:
            return self.model.factory.item_key(raw_id)
        except (TypeError, ValueError):
            raise InvalidArgumentError(f"Invalid item ID: {raw_id!r}")

    async def get_user(self, user_id: str) -> User:
        return await self._run(self.model.get_user, self.user_key(user_id))

    async def list_user_ids(self, limit: Optional[int] = None) -> List[Any]:
        def read() -> List[Any]:
            return [user.id for user in drain(self.model.list_users(), limit)]
        return await self._run(read)

    async def list_item_ids(self, limit: Optional[int] = None) -> List[Any]:
        def read() -> List[Any]:
            return [item.id for item in drain(self.model.list_items(), limit)]
        return await self._run(read)

    async def get_item(self, item_id: str, assume_exists: bool = False) -> Item:
        return await self._run(self.model.get_item, self.item_key(item_id), assume_exists=assume_exists)

    async def get_preferences_for_item(self, item_id: str) -> List[Preference]:
        prefs = await self._run(self.model.get_preferences_for_item, self.item_key(item_id))
        return list(prefs)

    async def get_counts(self) -> Dict[str, int]:
        def count() -> Dict[str, int]:
            return {"users": self.model.count_users(), "items": self.model.count_items()}
        return await self._run(count)

    async def set_preference(self, user_id: str, item_id: str, value: float) -> None:
        await self._run(self.model.set_preference, self.user_key(user_id), self.item_key(item_id), value)

    async def remove_preference(self, user_id: str, item_id: str) -> None:
        await self._run(self.model.remove_preference, self.user_key(user_id), self.item_key(item_id))

    async def refresh(self) -> None:
        await self._run(self.model.refresh)

    async def health_check(self) -> bool:
        """Check if the backing store answers a count query"""
        try:
            await self._run(self.model.count_users)
            return True
        except Exception as e:
            logger.error(f"Data model health check failed: {e}")
            return False

    def get_model_info(self) -> dict:
        return {
            "backend": type(self.model).__name__,
            "model": repr(self.model),
        }

    def close(self) -> None:
        self.model.close()
        self.executor.shutdown(wait=False)


# Global data model service instance
data_model_service: Optional[DataModelService] = None

def get_data_model_service() -> DataModelService:
    """Dependency injection for data model service"""
    global data_model_service
    if data_model_service is None:
        raise RuntimeError("Data model service not initialized")
    return data_model_service

def set_data_model_service(service: Optional[DataModelService]) -> None:
    global data_model_service
    data_model_service = service

async def init_data_model_service(config: Settings = default_settings) -> DataModelService:
    """Initialize global data model service"""
    loop = asyncio.get_running_loop()
    model = await loop.run_in_executor(None, build_data_model, config)
    service = DataModelService(model, max_workers=config.SERVICE_WORKERS)
    set_data_model_service(service)
    logger.info(f"✅ Data model ready: {model!r}")
    return service

def shutdown_data_model_service() -> None:
    """Release the global service and its model"""
    global data_model_service
    if data_model_service is not None:
        data_model_service.close()
        data_model_service = None
