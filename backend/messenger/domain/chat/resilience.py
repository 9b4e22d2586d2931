"""Bounded datastore calls: timeout, one short retry, then PersistenceError."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import asyncpg

from messenger.obs import metrics as obs_metrics
from messenger.settings import settings

from .exceptions import ChatError, PersistenceError, ValidationError

T = TypeVar("T")

_log = logging.getLogger(__name__)

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
	asyncio.TimeoutError,
	ConnectionError,
	OSError,
	asyncpg.PostgresConnectionError,
	asyncpg.InterfaceError,
	asyncpg.TooManyConnectionsError,
	asyncpg.CannotConnectNowError,
)


async def persist(
	operation: str,
	call: Callable[[], Awaitable[T]],
	*,
	timeout: Optional[float] = None,
	retries: Optional[int] = None,
	backoff: Optional[float] = None,
) -> T:
	"""Run ``call`` under a timeout, retrying transient failures.

	Domain errors raised by ``call`` propagate untouched. Anything else ends up
	as ``PersistenceError`` once the retry budget is spent.
	"""
	timeout = settings.chat_store_timeout_seconds if timeout is None else timeout
	retries = settings.chat_store_retries if retries is None else retries
	backoff = settings.chat_store_retry_backoff_seconds if backoff is None else backoff
	attempt = 0
	while True:
		try:
			return await asyncio.wait_for(call(), timeout=timeout)
		except ChatError:
			raise
		except asyncpg.DataError as exc:
			# Malformed identifiers are rejected by the column types.
			raise ValidationError("Invalid identifier") from exc
		except TRANSIENT_ERRORS as exc:
			if attempt < retries:
				attempt += 1
				obs_metrics.inc_store_retry(operation)
				_log.warning(
					"store call failed, retrying",
					extra={"operation": operation, "attempt": attempt, "error": type(exc).__name__},
				)
				await asyncio.sleep(backoff * attempt)
				continue
			obs_metrics.inc_store_failure(operation)
			_log.error("store call failed", extra={"operation": operation, "error": type(exc).__name__})
			raise PersistenceError() from exc
		except Exception as exc:
			obs_metrics.inc_store_failure(operation)
			_log.exception("store call raised", extra={"operation": operation})
			raise PersistenceError() from exc
