from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from nexus_chat.config import settings
from nexus_chat.routers import chat
from nexus_chat.services.chat_service import ChatService, InvalidMessageError
from nexus_chat.services.responders import create_responder
from nexus_chat.services.storage import StorageError, create_store
import logging
import time

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Starting NEXUS chat service ({settings.ENVIRONMENT})")
    store = create_store(settings)
    responder = create_responder(settings)
    app.state.chat_service = ChatService(
        store,
        responder,
        responder_timeout=settings.RESPONDER_TIMEOUT_SECONDS,
    )
    logger.info(f"Storage: {settings.STORAGE_BACKEND}, responses: {settings.RESPONSE_STRATEGY}")
    yield
    # Shutdown
    await responder.aclose()
    logger.info("Shutting down NEXUS chat service")

app = FastAPI(
    title="NEXUS Chat",
    description="Chat widget backend with persisted conversation history",
    version="1.0.0",
    lifespan=lifespan
)

# Add CORS middleware
origins = settings.cors_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_origin_regex=None if origins == ["*"] else settings.VERCEL_ORIGIN_REGEX,
    # Browsers reject "*" with credentials
    allow_credentials=origins != ["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "HEAD"],
    allow_headers=["Content-Type", "Authorization", "x-session-id"],
)

@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    duration = (time.time() - start) * 1000
    logger.info(f"{request.method} {request.url.path} {response.status_code} in {duration:.0f}ms")
    return response

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"message": "Invalid message format", "errors": jsonable_encoder(exc.errors())},
    )

@app.exception_handler(InvalidMessageError)
async def invalid_message_handler(request: Request, exc: InvalidMessageError):
    return JSONResponse(status_code=400, content={"message": str(exc), "errors": jsonable_encoder(exc.errors)})

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail}, headers=exc.headers)

@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error(f"Storage error on {request.method} {request.url.path} "
                 f"(session {request.headers.get('x-session-id')}): {exc}")
    return JSONResponse(status_code=500, content={"message": "Internal server error"})

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"message": "Internal server error"})

app.include_router(chat.router)

@app.get("/")
async def root():
    return {
        "message": "NEXUS Chat API",
        "version": "1.0.0",
        "endpoints": {
            "session": "/api/chat/session",
            "exists": "/api/chat/{session_id}/exists",
            "chat": "/api/chat",
            "messages": "/api/chat/{session_id}/messages",
            "health": "/health",
            "status": "/status",
            "docs": "/docs"
        }
    }

@app.get("/health")
@app.get("/status")
async def health_check():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "env": settings.ENVIRONMENT
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
