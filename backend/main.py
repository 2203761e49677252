import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from errors import GameError, InternalError

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🕵️ Undercover backend starting up (store=%s)...", settings.store_backend)
    yield
    logger.info("Backend shutting down.")


app = FastAPI(
    title="Undercover",
    version="0.1.0",
    description="Room and game lifecycle engine for the Undercover word party game",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-User-Id"],
)


@app.exception_handler(GameError)
async def game_error_handler(request: Request, exc: GameError):
    if isinstance(exc, InternalError):
        logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc.message, exc_info=exc)
    else:
        logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = InternalError("Internal server error", "server_error")
    return JSONResponse(status_code=error.status_code, content={"error": error.to_dict()})


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "undercover", "version": "0.1.0"}


from routers.game_router import router as game_router
from routers.ws_router import router as ws_router

app.include_router(game_router, prefix="/api")
app.include_router(ws_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
