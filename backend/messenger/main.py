"""ASGI entrypoint: FastAPI for HTTP plus a Socket.IO server for live messaging."""

from __future__ import annotations

from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from messenger.api import chat, ops
from messenger.api.errors import install_error_handlers
from messenger.api.middleware_request_id import RequestIdMiddleware
from messenger.domain.chat.container import ChatContext, build_context
from messenger.domain.chat.sockets import ChatNamespace
from messenger.infra import postgres
from messenger.obs import init as obs_init
from messenger.settings import settings


def _allowed_origins() -> list[str]:
	allow_origins = list(settings.cors_allow_origins)
	if not allow_origins:
		allow_origins = ["http://localhost:3000"] if settings.is_dev() else []
	# Starlette disallows wildcard '*' with allow_credentials=True.
	if "*" in allow_origins:
		allow_origins = ["http://localhost:3000", "http://127.0.0.1:3000"] if settings.is_dev() else []
	return allow_origins


def _socket_server(allow_origins: list[str]) -> socketio.AsyncServer:
	client_manager = None
	if settings.socket_redis_url:
		# Fan-out across instances goes through the shared Redis channel.
		client_manager = socketio.AsyncRedisManager(settings.socket_redis_url)
	return socketio.AsyncServer(
		async_mode="asgi",
		cors_allowed_origins=allow_origins,
		ping_interval=settings.socket_ping_interval_seconds,
		ping_timeout=settings.socket_ping_timeout_seconds,
		client_manager=client_manager,
	)


@asynccontextmanager
async def lifespan(app: FastAPI):
	await postgres.init_pool()
	try:
		yield
	finally:
		await app.state.chat_namespace.shutdown()
		await app.state.chat.notifications.drain()
		await postgres.close_pool()


def create_app(context: ChatContext | None = None) -> FastAPI:
	app = FastAPI(title="Fellowship Messenger", lifespan=lifespan)
	install_error_handlers(app)

	allow_origins = _allowed_origins()
	app.add_middleware(
		CORSMiddleware,
		allow_origins=allow_origins,
		allow_credentials=True,
		allow_methods=["*"],
		allow_headers=["*"],
	)

	sio = _socket_server(allow_origins)
	context = context or build_context(shared=bool(settings.socket_redis_url))
	namespace = ChatNamespace(context)
	sio.register_namespace(namespace)
	app.state.chat = context
	app.state.sio = sio
	app.state.chat_namespace = namespace

	obs_init(app)
	app.add_middleware(RequestIdMiddleware)

	app.include_router(chat.router, tags=["chat"])
	app.include_router(ops.router, tags=["ops"])
	return app


app = create_app()
sio = app.state.sio
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
