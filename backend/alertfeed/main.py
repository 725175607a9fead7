# Alert Feed - FastAPI Entrypoint
# POST /new-stocks, /clear-live, /clear-history, GET /health, WS /ws; liveness + retention scheduler

import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Ensure repo root is on path so "database" package is importable when running from backend/
_repo_root = Path(__file__).resolve().parent.parent.parent
if _repo_root.exists() and str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

from fastapi import Depends, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from alertfeed.config import settings
from alertfeed.errors import AlertFeedError, MalformedTimeString, ObserverUnreachable, StoreUnavailable
from alertfeed.logging_config import configure_logging
from alertfeed.schemas import AlertSubmission
from alertfeed.services.alert_store import AlertStore
from alertfeed.services.broadcast import BroadcastDistributor
from alertfeed.services.feed import AlertFeed
from alertfeed.services.retention import RetentionSweeper
from alertfeed.services.snapshot_cache import SnapshotCache
from alertfeed.time_windows import TimeWindows

# Database (import after path fix)
from database.session import get_engine, get_session_factory, init_db

logger = logging.getLogger("alertfeed.api")

app = FastAPI(
    title="Alert Feed API",
    description="Stock alert aggregation with live/history broadcast",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_engine = None
_session_factory = None
_feed: AlertFeed | None = None
_sweeper: RetentionSweeper | None = None
_scheduler = None


def _get_engine():
    global _engine
    if _engine is None:
        _engine = get_engine(settings.database_url)
    return _engine


def _get_session_factory():
    global _session_factory
    if _session_factory is None:
        _session_factory = get_session_factory(_get_engine())
    return _session_factory


def get_feed() -> AlertFeed:
    global _feed
    if _feed is None:
        windows = TimeWindows(settings.reference_timezone, retention_days=settings.retention_days)
        store = AlertStore(_get_session_factory())
        _feed = AlertFeed(
            store=store,
            windows=windows,
            cache=SnapshotCache(store, windows),
            distributor=BroadcastDistributor(queue_size=settings.observer_queue_size),
        )
    return _feed


def get_sweeper() -> RetentionSweeper:
    global _sweeper
    if _sweeper is None:
        _sweeper = RetentionSweeper(get_feed())
    return _sweeper


async def _liveness_job():
    removed = await get_feed().distributor.probe()
    if removed:
        logger.info("Liveness probe removed %d closed observer(s)", removed)


async def _retention_job():
    await get_sweeper().sweep()


def _schedule_jobs():
    """Liveness probe every heartbeat interval; retention sweep every retention_sweep_minutes."""
    from apscheduler.schedulers.asyncio import AsyncIOScheduler

    global _scheduler
    _scheduler = AsyncIOScheduler(timezone=timezone.utc)
    _scheduler.add_job(
        _liveness_job,
        "interval",
        seconds=settings.heartbeat_interval_seconds,
        id="liveness_probe",
        max_instances=1,
        coalesce=True,
    )
    _scheduler.add_job(
        _retention_job,
        "interval",
        minutes=settings.retention_sweep_minutes,
        id="retention_sweep",
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now(timezone.utc) + timedelta(seconds=60),
    )
    _scheduler.start()


@app.on_event("startup")
async def startup():
    configure_logging(settings.log_level, json_logs=settings.log_json)
    await init_db(_get_engine())
    feed = get_feed()
    try:
        await feed.prime()
    except StoreUnavailable as e:
        # Cache stays empty until the next mutation refreshes it.
        logger.error("Initial snapshot failed: %s", e)
    if settings.scheduler_enabled:
        _schedule_jobs()


@app.on_event("shutdown")
async def shutdown():
    global _scheduler, _feed, _sweeper, _session_factory, _engine
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
    if _feed is not None:
        await _feed.distributor.close_all()
    if _engine is not None:
        await _engine.dispose()
    _feed = None
    _sweeper = None
    _session_factory = None
    _engine = None


@app.get("/health")
async def health(feed: AlertFeed = Depends(get_feed)):
    """Returns API and DB status."""
    try:
        await feed.store.ping()
        db_status = "connected"
    except StoreUnavailable as e:
        db_status = f"error: {e!s}"
    return {
        "status": "ok",
        "database": db_status,
        "observers": feed.distributor.observer_count,
        "snapshot_version": feed.cache.current.version,
    }


@app.post("/new-stocks")
async def new_stocks(submission: AlertSubmission, feed: AlertFeed = Depends(get_feed)):
    """
    Merge a batch of triggered alerts and push a delta of the affected rows.
    Malformed prices are skipped; a malformed shared trigger time fails the request.
    """
    try:
        await feed.submit(submission)
    except MalformedTimeString as e:
        logger.warning("POST /new-stocks rejected: %s", e)
        raise HTTPException(status_code=500, detail=str(e))
    except AlertFeedError as e:
        logger.exception("POST /new-stocks error: %s", e)
        raise HTTPException(status_code=500, detail="Internal Server Error")
    return {"status": "ok"}


@app.post("/clear-live")
async def clear_live(feed: AlertFeed = Depends(get_feed)):
    """Delete today's alerts and push a fresh init to every observer."""
    try:
        await feed.clear_live()
    except AlertFeedError as e:
        logger.exception("POST /clear-live error: %s", e)
        raise HTTPException(status_code=500, detail="Internal Server Error")
    return {"status": "ok"}


@app.post("/clear-history")
async def clear_history(feed: AlertFeed = Depends(get_feed)):
    """Delete every alert from before today and push a fresh init to every observer."""
    try:
        await feed.clear_history()
    except AlertFeedError as e:
        logger.exception("POST /clear-history error: %s", e)
        raise HTTPException(status_code=500, detail="Internal Server Error")
    return {"status": "ok"}


@app.websocket("/ws")
async def alerts_ws(websocket: WebSocket, feed: AlertFeed = Depends(get_feed)):
    """
    Viewer stream.
      - server sends {"type":"init",...} on connect and after clears/sweeps, {"type":"delta",...} after ingestion
      - liveness is protocol-level: uvicorn pings every heartbeat interval and drops peers that miss the pong
      - client text "ping" is answered with "pong"
    """
    observer = await feed.connect(websocket)
    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                observer.offer("pong")
    except WebSocketDisconnect:
        pass
    except ObserverUnreachable as e:
        logger.warning("Observer unreachable: %s", e)
    finally:
        await feed.distributor.disconnect(observer)


def serve() -> None:
    import uvicorn

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        ws_ping_interval=settings.heartbeat_interval_seconds,
        ws_ping_timeout=settings.heartbeat_timeout_seconds,
    )


if __name__ == "__main__":
    serve()
