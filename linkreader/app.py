from __future__ import annotations

from datetime import datetime, timezone

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from linkreader.config import ServiceConfig, load_service_config
from linkreader.notifications import NotificationChannel, NotificationRegistry, client_id_for, stream_events
from linkreader.orchestrator import Orchestrator
from linkreader.rpc import RpcDispatcher

CORS_ALLOWED_METHODS = ["GET", "POST", "OPTIONS"]
CORS_ALLOWED_HEADERS = ["Content-Type", "Last-Event-ID"]


def create_app(config: ServiceConfig | None = None, orchestrator: Orchestrator | None = None) -> FastAPI:
    service_config = config or load_service_config()
    orchestrator = orchestrator or Orchestrator(service_config)
    dispatcher = RpcDispatcher(orchestrator, response_deadline=service_config.timeouts.response_deadline)
    registry = NotificationRegistry()

    app = FastAPI(title="Link Reader MCP Server")
    app.state.config = service_config
    app.state.dispatcher = dispatcher
    app.state.notifications = registry

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=CORS_ALLOWED_METHODS,
        allow_headers=CORS_ALLOWED_HEADERS,
    )

    @app.get("/health")
    @app.get("/healthz")
    def health_check():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.post("/mcp")
    @app.post("/")
    async def rpc_endpoint(request: Request):
        reply = await dispatcher.handle_body(await request.body())
        return JSONResponse(status_code=reply.status_code, content=reply.body)

    @app.options("/{path:path}")
    def preflight(path: str = ""):
        return Response(status_code=200)

    @app.get("/{path:path}")
    async def notification_stream(request: Request, path: str = ""):
        client_id = client_id_for(
            request.headers.get("x-client-id"),
            request.client.host if request.client else None,
        )
        channel = NotificationChannel(client_id, keepalive_interval=service_config.timeouts.keepalive_interval)
        return StreamingResponse(
            stream_events(request, channel, registry),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    return app


app = create_app()
