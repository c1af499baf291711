from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from livechat.api import action_templates, conversations, health, submissions, visitor
from livechat.core.config import settings
from livechat.core.logging import api_logger
from livechat.core.middleware import (
    RequestContextMiddleware,
    http_exception_handler,
    validation_exception_handler,
)
from livechat.db.database import create_tables
from livechat.realtime import sio


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    # Alembic owns the schema in production; create_all is a no-op for existing tables
    await create_tables()
    api_logger.info("Startup complete", env=settings.APP_ENV)
    yield


app = FastAPI(
    title="livechat API",
    description="Dynamic action and form engine for live chat conversations",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestContextMiddleware)

app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)

# Include routers
app.include_router(action_templates.router, prefix="/api/projects", tags=["Action Templates"])
app.include_router(conversations.router, prefix="/api/conversations", tags=["Conversation Actions"])
app.include_router(submissions.router, prefix="/api/submissions", tags=["Submissions"])
app.include_router(visitor.router, prefix="/api/visitor", tags=["Visitor"])
app.include_router(health.router, prefix="", tags=["Health"])

# Socket.IO in front of the API: /socket.io/ goes to sio, everything else to FastAPI.
# Run with `uvicorn livechat.main:asgi_app`.
asgi_app = socketio.ASGIApp(sio, other_asgi_app=app, socketio_path="socket.io")
