from __future__ import annotations

from datetime import datetime, timezone
import logging

from dotenv import load_dotenv
from fastapi import APIRouter, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from sqlalchemy import text
from starlette.middleware.cors import CORSMiddleware

from .codes import normalize_lobby_code
from .config import settings
from .db import check_db_connection, get_db, init_db
from .dispatcher import build_dispatcher
from .errors import AppError
from .logging_utils import configure_logging
from .metrics import CONTENT_TYPE_LATEST, REQUESTS_TOTAL, generate_latest
from .routers.games import get_gateway, router as games_router
from .ws_manager import ConnectionManager
from .ws_session import PlayerSocketSession

load_dotenv()
configure_logging()
logger = logging.getLogger("movienight.app")

app = FastAPI(title="Movie Night Party API", version="1.0.0", debug=settings.debug)
api_router = APIRouter(prefix="/api")

ws_manager = ConnectionManager()


@app.on_event("startup")
async def startup_event() -> None:
    check_db_connection()
    init_db()
    logger.info(
        "Backend startup complete",
        extra={
            "event": "startup",
            "db_backend": "sqlite" if settings.is_sqlite else "postgres",
        },
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_metrics_middleware(request: Request, call_next):
    response = await call_next(request)
    REQUESTS_TOTAL.labels(method=request.method, path=request.url.path, status=str(response.status_code)).inc()
    return response


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "Request failed",
            extra={"event": "request_failed", "path": request.url.path, "status": exc.status_code},
        )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    detail = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"detail": detail})


@api_router.get("/")
async def root() -> dict[str, str]:
    return {"message": "Movie Night Party API"}


@api_router.get("/health")
async def api_healthcheck() -> dict[str, str]:
    with get_db() as session:
        session.execute(text("SELECT 1"))
    return {"status": "ok", "ts": datetime.now(timezone.utc).isoformat()}


@app.get("/health")
async def healthcheck() -> dict[str, str]:
    with get_db() as session:
        session.execute(text("SELECT 1"))
    return {"status": "ok", "ts": datetime.now(timezone.utc).isoformat()}


@app.get("/metrics")
async def metrics() -> Response:
    if not settings.enable_prometheus_metrics:
        raise HTTPException(status_code=404, detail="Metrics disabled")
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


api_router.include_router(games_router)
app.include_router(api_router)


@app.websocket("/ws/lobbies/{lobby_code}")
async def websocket_lobby(websocket: WebSocket, lobby_code: str) -> None:
    code = normalize_lobby_code(lobby_code)
    player_id = websocket.query_params.get("player_id") or ""
    gateway = get_gateway()
    session = PlayerSocketSession(
        websocket,
        gateway,
        build_dispatcher(gateway),
        lobby_code=code,
        player_id=player_id,
    )

    try:
        # Validate membership before accepting the stream.
        session.open()
    except AppError as exc:
        session.close()
        logger.info(
            "WebSocket rejected",
            extra={"event": "ws_rejected", "lobby_code": code, "player_id": player_id, "reason": exc.message},
        )
        await websocket.close(code=4404)
        return

    await ws_manager.connect(code, player_id, websocket)
    try:
        await session.run()
    except WebSocketDisconnect:
        pass
    finally:
        session.close()
        await ws_manager.disconnect(code, player_id, websocket)
