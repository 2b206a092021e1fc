from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from socialgraph.metrics import METRICS_ENABLED, metrics_endpoint, metrics_middleware, set_app_info
from socialgraph.routers.admin import router as admin_router
from socialgraph.routers.engagement import router as engagement_router
from socialgraph.routers.graph import router as graph_router
from socialgraph.routers.notifications import router as notifications_router

def create_app() -> FastAPI:
    app = FastAPI(title="Social Consistency Layer", version="0.1.0")

    @app.get("/healthz")
    async def healthz():
        return {"ok": True}

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if METRICS_ENABLED:
        app.middleware("http")(metrics_middleware)
        set_app_info(app.title, app.version)
        app.get("/metrics")(metrics_endpoint)

    app.include_router(graph_router)
    app.include_router(engagement_router)
    app.include_router(notifications_router)
    app.include_router(admin_router)

    return app

app = create_app()
