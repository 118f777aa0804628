# main.py - FastAPI application entry point
import logging
from contextlib import asynccontextmanager
from adapters.api import app
from services.data_model_service import init_data_model_service, shutdown_data_model_service
from config import settings

@asynccontextmanager
async def lifespan(app):
    """Application startup and shutdown"""
    # Startup
    logging.getLogger().setLevel(settings.LOG_LEVEL.upper())
    print("🚀 Starting Preference Data Model API v1.0...")

    try:
        print(f"📊 Loading '{settings.DATA_BACKEND}' data model...")
        await init_data_model_service(settings)

        print("✅ All services initialized successfully!")
        print(f"🌐 API ready at http://{settings.API_HOST}:{settings.API_PORT}")
        print(f"📚 Documentation at http://{settings.API_HOST}:{settings.API_PORT}/docs")
        print("🔗 Main endpoints:")
        print("   - Users: GET /users, GET /users/{user_id}")
        print("   - Items: GET /items, GET /items/{item_id}/preferences")
        print("🔗 Other endpoints:")
        print("   - Health: GET /health")
        print("   - Refresh: POST /refresh")

    except Exception as e:
        print(f"❌ Startup failed: {e}")
        raise

    yield

    # Shutdown
    print("🔄 Shutting down services...")
    shutdown_data_model_service()

# Set lifespan for the app
app.router.lifespan_context = lifespan

if __name__ == "__main__":
    import uvicorn

    print("🚀 Starting server...")
    uvicorn.run(
        "main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=False,
        workers=1,
        log_level=settings.LOG_LEVEL.lower()
    )
