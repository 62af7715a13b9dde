"""FastAPI application for the CRM contact extraction chatbot"""
import logging
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment variables
load_dotenv()

from config import settings
from api.routes import chat
from core.conversation import StorageUnavailable

# Setup logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="CRM Contact Extraction Chatbot API",
    version="1.0.0",
    description="Turns conversational CRM requests into structured contact records"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "session_backend": settings.SESSION_BACKEND,
    }


# Include API routes
app.include_router(chat.router, prefix="/api", tags=["chat"])
app.add_exception_handler(StorageUnavailable, chat.storage_unavailable_handler)


@app.on_event("shutdown")
async def shutdown_event():
    """Release pooled database connections"""
    if settings.SESSION_BACKEND == "postgres":
        from core.database import get_database
        get_database().close_all_connections()
        logger.info("🛑 Shutdown complete")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
