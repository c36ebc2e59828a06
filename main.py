"""Admin HTTP API and process entry point for the KafkaChannel dispatcher reconciler.

Run with e.g. ``uvicorn main:app``. The controller starts with the app and stops
with it; ``KCR_STORE=memory`` runs it against an in-process store.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query, Request, status

from kcr import db
from kcr.aggregator import StatusAggregator
from kcr.api_models import Accepted, ChannelView, EventView
from kcr.controller import Controller
from kcr.errors import ReconcilerError
from kcr.reconciler import DispatcherReconciler
from kcr.resolver import LabelSecretResolver
from kcr.settings import Settings, settings
from kcr.store import MemoryStore, ObjectStore

LOG = logging.getLogger("kcr")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


def build_store(cfg: Settings = settings) -> ObjectStore:
    if cfg.store == "memory":
        LOG.warning("using the in-memory object store; nothing is written to a cluster")
        return MemoryStore()
    from kcr.kube_ops import KubeStore

    return KubeStore(cfg)


def build_controller(cfg: Settings = settings, store: ObjectStore | None = None) -> Controller:
    store = store or build_store(cfg)
    engine = DispatcherReconciler(store, LabelSecretResolver(store, cfg.system_namespace), cfg)
    return Controller(store, engine, StatusAggregator(store, cfg), cfg)


def create_app(controller: Controller | None = None, start: bool | None = None) -> FastAPI:
    start = settings.start_controller if start is None else start

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _setup_logging(settings.log_level)
        db.init_db()
        ctl = controller or build_controller()
        app.state.controller = ctl
        if start:
            ctl.start()
        try:
            yield
        finally:
            if start:
                ctl.stop()

    app = FastAPI(title="KafkaChannel Dispatcher Reconciler", lifespan=lifespan)

    def _controller(request: Request) -> Controller:
        return request.app.state.controller

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/channels", response_model=list[ChannelView])
    def list_channels(request: Request) -> list[ChannelView]:
        try:
            channels = _controller(request).store.list_channels()
        except ReconcilerError as e:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
        return [ChannelView.from_channel(c) for c in channels]

    @app.post("/channels/{namespace}/{name}/reconcile", response_model=Accepted, status_code=202)
    def reconcile_channel(namespace: str, name: str, request: Request) -> Accepted:
        _controller(request).enqueue_channel(namespace, name)
        return Accepted(queued=f"channel {namespace}/{name}")

    @app.post("/secrets/{name}/propagate", response_model=Accepted, status_code=202)
    def propagate_secret(name: str, request: Request) -> Accepted:
        _controller(request).enqueue_secret(name)
        return Accepted(queued=f"secret {name}")

    @app.get("/events", response_model=list[EventView])
    def events(limit: int = Query(50, ge=1, le=1000), subject: str | None = None) -> list[EventView]:
        return [EventView(**e) for e in db.latest_events(limit, subject=subject)]

    return app


app = create_app()
