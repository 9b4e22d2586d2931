"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNTER = Counter(
	"messenger_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"messenger_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"messenger_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"messenger_socketio_events_total",
	"Socket.IO events handled per namespace",
	["namespace", "event"],
)

SOCKET_ERRORS = Counter(
	"messenger_socketio_errors_total",
	"Error events returned to socket clients",
	["reason"],
)

PRESENCE_ONLINE = Gauge(
	"messenger_presence_online_users",
	"Users with at least one live connection in this process",
)

PRESENCE_CONNECTIONS = Gauge(
	"messenger_presence_connections",
	"Registered live connection handles in this process",
)

CHAT_SEND = Counter(
	"messenger_chat_send_total",
	"Chat messages persisted",
	["channel"],
)

CHAT_LIVE_DELIVERIES = Counter(
	"messenger_chat_live_deliveries_total",
	"Messages pushed to at least one live receiver connection",
)

CHAT_READ_UPDATES = Counter(
	"messenger_chat_read_updates_total",
	"Messages transitioned to read",
)

CHAT_DELETES = Counter(
	"messenger_chat_deletes_total",
	"Messages soft-deleted by their sender",
)

STORE_RETRIES = Counter(
	"messenger_store_retries_total",
	"Datastore calls retried after a transient failure",
	["operation"],
)

STORE_FAILURES = Counter(
	"messenger_store_failures_total",
	"Datastore calls surfaced as persistence errors",
	["operation"],
)

VIEW_CACHE = Counter(
	"messenger_view_cache_total",
	"Conversation/contact view cache lookups",
	["view", "result"],
)

NOTIFICATIONS = Counter(
	"messenger_offline_notifications_total",
	"Best-effort offline notifications",
	["result"],
)

REDIS_UP = Gauge("messenger_redis_up", "Redis availability (1=up,0=down)")
REDIS_LATENCY = Histogram("messenger_redis_latency_seconds", "Redis ping latency")
POSTGRES_UP = Gauge("messenger_postgres_up", "Postgres availability (1=up,0=down)")
POSTGRES_LATENCY = Histogram("messenger_postgres_latency_seconds", "Postgres probe latency")


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def socket_error(reason: str) -> None:
	SOCKET_ERRORS.labels(reason=reason).inc()


def presence_changed(online_users: int, connections: int) -> None:
	PRESENCE_ONLINE.set(online_users)
	PRESENCE_CONNECTIONS.set(connections)


def inc_chat_send(channel: str) -> None:
	CHAT_SEND.labels(channel=channel).inc()


def inc_chat_live_delivery() -> None:
	CHAT_LIVE_DELIVERIES.inc()


def inc_chat_read(count: int) -> None:
	if count > 0:
		CHAT_READ_UPDATES.inc(count)


def inc_chat_delete() -> None:
	CHAT_DELETES.inc()


def inc_store_retry(operation: str) -> None:
	STORE_RETRIES.labels(operation=operation).inc()


def inc_store_failure(operation: str) -> None:
	STORE_FAILURES.labels(operation=operation).inc()


def view_cache(view: str, hit: bool) -> None:
	VIEW_CACHE.labels(view=view, result="hit" if hit else "miss").inc()


def inc_notification(result: str) -> None:
	NOTIFICATIONS.labels(result=result).inc()


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)


def mark_postgres(ok: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)
