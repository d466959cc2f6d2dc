"""Central registry for Prometheus metrics used by the rooms service."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

REQUEST_COUNTER = Counter(
	"rooms_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"rooms_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

ROOM_COMMANDS = Counter(
	"rooms_commands_total",
	"Room commands dispatched",
	["command", "outcome"],
)

ROOMS_CREATED = Counter(
	"rooms_created_total",
	"Rooms created (including welcome rooms)",
)

AUTHORIZATION_DENIED = Counter(
	"rooms_authorization_denied_total",
	"Room operations rejected by the authorization gate",
	["right"],
)

INTERNAL_ERRORS = Counter(
	"rooms_internal_errors_total",
	"Unexpected faults normalised to internal errors",
	["operation"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_command(command: str, outcome: str) -> None:
	ROOM_COMMANDS.labels(command=command, outcome=outcome).inc()


def inc_room_created() -> None:
	ROOMS_CREATED.inc()


def inc_authorization_denied(right: str) -> None:
	AUTHORIZATION_DENIED.labels(right=right).inc()


def inc_internal_error(operation: str) -> None:
	INTERNAL_ERRORS.labels(operation=operation).inc()
