"""FastAPI application entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from converter.api.routes import router
from converter.config import CORS_ORIGINS, SESSION_IDLE_SECONDS, SESSION_SWEEP_SECONDS, logger as config_logger
from converter.sessions import close_all_sessions, expire_idle_sessions

logging.getLogger("uvicorn").setLevel(logging.INFO)


async def sweep_idle_sessions(interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await expire_idle_sessions()
        except Exception:
            config_logger.exception("Idle session sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    config_logger.info("Converter API started")
    sweeper = None
    if SESSION_IDLE_SECONDS and SESSION_SWEEP_SECONDS:
        sweeper = asyncio.create_task(sweep_idle_sessions(SESSION_SWEEP_SECONDS))
    yield
    if sweeper is not None:
        sweeper.cancel()
        await asyncio.gather(sweeper, return_exceptions=True)
    await close_all_sessions()
    config_logger.info("Converter API shutting down")


app = FastAPI(
    title="JPG/PDF Converter API",
    description="Queue JPG and PDF files, convert them into each other with progress tracking, and download the results.",
    version="1.0.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS if CORS_ORIGINS else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Session-ID", "Content-Disposition"],
)


async def session_header_middleware(request, call_next):
    """Set X-Session-ID on response when the session was created by the dependency."""
    response = await call_next(request)
    if hasattr(request.state, "session_id"):
        response.headers["X-Session-ID"] = request.state.session_id
    return response


app.middleware("http")(session_header_middleware)
app.include_router(router)


def run() -> None:
    import uvicorn
    from converter.config import HOST, PORT
    uvicorn.run("converter.main:app", host=HOST, port=PORT, reload=True)


if __name__ == "__main__":
    run()
