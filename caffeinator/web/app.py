"""FastAPI application exposing the session manager to out-of-process UIs."""
import asyncio
import logging
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from .. import __version__
from ..core.process_watch import ProcessWatchMonitor
from ..core.session import SessionManager
from ..database import Database
from .routes import router
from .websocket import ConnectionManager


logger = logging.getLogger(__name__)


def create_app(
    manager: SessionManager,
    monitor: Optional[ProcessWatchMonitor] = None,
    database: Optional[Database] = None,
) -> FastAPI:
    """Build the status bridge around explicitly owned service instances."""
    app = FastAPI(
        title="Caffeinator",
        description="Status bridge for Caffeinator front ends",
        version=__version__,
    )

    connections = ConnectionManager()
    app.state.manager = manager
    app.state.monitor = monitor
    app.state.database = database
    app.state.connections = connections

    # Include API routes
    app.include_router(router)

    @app.get("/")
    async def root():
        return {"message": "Caffeinator API", "docs": "/docs"}

    @app.websocket("/ws/status")
    async def websocket_endpoint(websocket: WebSocket):
        """WebSocket endpoint pushing every session and process event."""
        await connections.connect(websocket)

        # Send current status on connect
        await websocket.send_json({
            "type": "connected",
            "status": manager.status().to_dict(),
        })

        try:
            while True:
                data = await websocket.receive_text()

                # Handle ping/pong for keepalive
                if data == "ping":
                    await websocket.send_text("pong")
                elif data == "status":
                    await websocket.send_json({
                        "type": "status",
                        "status": manager.status().to_dict(),
                    })

        except WebSocketDisconnect:
            connections.disconnect(websocket)

    unsubscribe = []

    @app.on_event("startup")
    async def startup_event():
        """Start forwarding events to WebSocket clients."""
        connections.attach(asyncio.get_running_loop())
        unsubscribe.append(manager.events.subscribe("session.*", connections.forward_event))
        unsubscribe.append(manager.events.subscribe("process.*", connections.forward_event))
        logger.info("Caffeinator status bridge starting")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup on shutdown."""
        while unsubscribe:
            unsubscribe.pop()()
        logger.info("Caffeinator status bridge shutting down")

    return app
