"""JSON log lines carrying the request, command and user being served."""

from __future__ import annotations

import json
import logging
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from rooms_service.settings import settings

_BOUND: ContextVar[Mapping[str, str]] = ContextVar("rooms_log_context", default={})

# Attributes every LogRecord carries; anything else on a record came in through ``extra=``.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))) | {"message", "asctime"}

# Contact details and inline photo data never reach the log stream.
_REDACTED_KEYS = ("email", "phone", "photo", "password", "token", "secret", "authorization")
_MAX_VALUE_CHARS = 200


def bind_context(
	*,
	request_id: Optional[str] = None,
	command: Optional[str] = None,
	user_id: Optional[str] = None,
) -> Token:
	"""Layer the given fields over the current context; undo with ``reset_context``."""
	fields = {"request_id": request_id, "command": command, "user_id": user_id}
	merged = dict(_BOUND.get())
	merged.update({key: value for key, value in fields.items() if value is not None})
	return _BOUND.set(merged)


def reset_context(token: Token) -> None:
	_BOUND.reset(token)


def current_request_id() -> Optional[str]:
	return _BOUND.get().get("request_id")


def scrub(key: str, value: Any) -> Any:
	"""Redact contact and credential fields; clip long values."""
	if any(marker in key.lower() for marker in _REDACTED_KEYS):
		return "[redacted]"
	if isinstance(value, Mapping):
		return {str(k): scrub(str(k), v) for k, v in value.items()}
	if isinstance(value, (list, tuple, set, frozenset)):
		return [scrub(key, item) for item in value]
	if isinstance(value, str) and len(value) > _MAX_VALUE_CHARS:
		return value[:_MAX_VALUE_CHARS] + "..."
	return value


class JSONLogFormatter(logging.Formatter):
	def format(self, record: logging.LogRecord) -> str:  # noqa: A003
		line: Dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"logger": record.name,
			"msg": record.getMessage(),
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
			**_BOUND.get(),
		}
		for key, value in vars(record).items():
			if key not in _RECORD_ATTRS and key not in line:
				line[key] = scrub(key, value)
		if record.exc_info:
			line["exc_info"] = self.formatException(record.exc_info)
		return json.dumps(line, separators=(",", ":"), default=str)


def configure_logging() -> None:
	root = logging.getLogger()
	root.handlers.clear()
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	root.addHandler(handler)
	root.setLevel(settings.obs_log_level)
