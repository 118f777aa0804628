# adapters/api.py - FastAPI surface over the preference data model
from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from typing import List, Optional, Union
import time
import logging

from domain.errors import BackendError, InvalidArgumentError, NotFoundError, UnsupportedOperationError
from domain.models import Preference, User
from services.data_model_service import get_data_model_service

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

EntityId = Union[int, str]

# Pydantic schemas
class PreferenceSchema(BaseModel):
    user_id: Optional[EntityId] = Field(None, description="User who expressed the preference")
    item_id: EntityId = Field(..., description="Item the preference is for")
    value: float = Field(..., description="Preference strength")

class UserResponse(BaseModel):
    user_id: EntityId = Field(..., description="User ID")
    preferences: List[PreferenceSchema] = Field(..., description="Preferences sorted by item ID")

class ItemResponse(BaseModel):
    item_id: EntityId = Field(..., description="Item ID")
    title: Optional[str] = Field(None, description="Item title, when the backend has one")

class ItemPreferencesResponse(BaseModel):
    item_id: EntityId = Field(..., description="Item ID")
    preferences: List[PreferenceSchema] = Field(..., description="Preferences sorted by user ID")

class IdListResponse(BaseModel):
    ids: List[EntityId] = Field(..., description="Identifiers in ascending order")
    count: int = Field(..., description="Number of identifiers returned", ge=0)

class StatsResponse(BaseModel):
    backend: str
    users: int = Field(..., ge=0)
    items: int = Field(..., ge=0)

class SetPreferenceRequest(BaseModel):
    value: float = Field(..., description="New preference value", allow_inf_nan=False)

class HealthResponseSchema(BaseModel):
    status: str
    timestamp: float
    backend: str
    data_available: bool

def preference_schema(preference: Preference) -> PreferenceSchema:
    return PreferenceSchema(user_id=preference.user_id, item_id=preference.item.id, value=preference.value)

def user_response(user: User) -> UserResponse:
    return UserResponse(user_id=user.id, preferences=[preference_schema(p) for p in user.preferences])

# Create FastAPI app
app = FastAPI(
    title="Preference Data Model API",
    description="User/item preference access over database, file and corpus backends",
    version="1.0.0"
)

# Add middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Performance monitoring middleware
@app.middleware("http")
async def performance_middleware(request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)

    if process_time > 0.1:
        logger.warning(f"Slow request: {request.url.path} took {process_time*1000:.2f}ms")

    return response

# Data model errors
@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

@app.exception_handler(InvalidArgumentError)
async def invalid_argument_handler(request: Request, exc: InvalidArgumentError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})

@app.exception_handler(UnsupportedOperationError)
async def unsupported_handler(request: Request, exc: UnsupportedOperationError):
    return JSONResponse(status_code=status.HTTP_405_METHOD_NOT_ALLOWED, content={"detail": str(exc)})

@app.exception_handler(BackendError)
async def backend_error_handler(request: Request, exc: BackendError):
    logger.error(f"Backend failure on {request.url.path}: {exc}")
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": "Data backend unavailable"})

# Health check endpoint
@app.get("/health", response_model=HealthResponseSchema)
async def health_check():
    """Health check endpoint"""
    try:
        service = get_data_model_service()
        healthy = await service.health_check()

        return HealthResponseSchema(
            status="healthy" if healthy else "unhealthy",
            timestamp=time.time(),
            backend=service.get_model_info()["backend"],
            data_available=healthy
        )

    except Exception as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service unhealthy"
        )

@app.get("/stats", response_model=StatsResponse)
async def get_stats():
    """Number of distinct users and items"""
    service = get_data_model_service()
    counts = await service.get_counts()
    return StatsResponse(backend=service.get_model_info()["backend"], **counts)

@app.get("/users", response_model=IdListResponse)
async def list_users(limit: Optional[int] = Query(None, ge=1, le=100000, description="Maximum number of IDs")):
    """
    List user IDs in ascending order

    - **limit**: Stop after this many users; the backend cursor is released early
    """
    ids = await get_data_model_service().list_user_ids(limit)
    return IdListResponse(ids=ids, count=len(ids))

@app.get("/users/{user_id}", response_model=UserResponse)
async def get_user(user_id: str):
    """Get a user with all of their preferences"""
    user = await get_data_model_service().get_user(user_id)
    return user_response(user)

@app.put("/users/{user_id}/preferences/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def set_preference(user_id: str, item_id: str, request: SetPreferenceRequest):
    """Insert or overwrite a preference (database backend only)"""
    await get_data_model_service().set_preference(user_id, item_id, request.value)

@app.delete("/users/{user_id}/preferences/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_preference(user_id: str, item_id: str):
    """Remove a preference (database backend only)"""
    await get_data_model_service().remove_preference(user_id, item_id)

@app.get("/items", response_model=IdListResponse)
async def list_items(limit: Optional[int] = Query(None, ge=1, le=100000, description="Maximum number of IDs")):
    """List item IDs in ascending order"""
    ids = await get_data_model_service().list_item_ids(limit)
    return IdListResponse(ids=ids, count=len(ids))

@app.get("/items/{item_id}", response_model=ItemResponse)
async def get_item(item_id: str, assume_exists: bool = False):
    """
    Get an item

    - **assume_exists**: Skip the existence check and build the item from its ID
    """
    item = await get_data_model_service().get_item(item_id, assume_exists=assume_exists)
    return ItemResponse(item_id=item.id, title=item.title)

@app.get("/items/{item_id}/preferences", response_model=ItemPreferencesResponse)
async def get_item_preferences(item_id: str):
    """All preferences expressed for an item, sorted by user ID"""
    service = get_data_model_service()
    preferences = await service.get_preferences_for_item(item_id)
    return ItemPreferencesResponse(
        item_id=service.item_key(item_id),
        preferences=[preference_schema(p) for p in preferences]
    )

@app.post("/refresh")
async def refresh():
    """Pick up changes made to the backing store"""
    service = get_data_model_service()
    await service.refresh()
    return {"status": "refreshed", "model": service.get_model_info()["model"]}

# Model info endpoint
@app.get("/model/info")
async def get_model_info():
    """Get data model information"""
    try:
        return get_data_model_service().get_model_info()
    except Exception:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Data model service unavailable"
        )

# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "service": "Preference Data Model API",
        "version": "1.0.0",
        "description": "User/item preferences over database, file and corpus backends",
        "endpoints": {
            "users": "GET /users, GET /users/{user_id}",
            "items": "GET /items, GET /items/{item_id}, GET /items/{item_id}/preferences",
            "preferences": "PUT|DELETE /users/{user_id}/preferences/{item_id}",
            "stats": "GET /stats",
            "refresh": "POST /refresh",
            "health_check": "GET /health",
            "documentation": "GET /docs"
        }
    }
