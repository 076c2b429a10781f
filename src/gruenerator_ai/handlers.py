"""Mailbox request handling for the AI dispatch worker."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from beast_mailbox_core import MailboxMessage

from .config import WorkerConfig
from .dispatcher import Dispatcher
from .errors import ConfigError, ProviderError, apology_message
from .intents import BaseContext, Intent, MultiIntentOrchestrator
from .pending import PendingRequestLock, PendingRequestStore, check_pending_request
from .providers.base import CanonicalRequest

SendResponseFn = Callable[..., Awaitable[str]]


def _parse_intents(raw: Any):
    intents = []
    for item in raw:
        if not isinstance(item, Mapping) or not item.get("agent"):
            raise ValueError("every intent needs an 'agent'")
        params = item.get("params")
        intents.append(
            Intent(
                agent=str(item["agent"]),
                confidence=float(item.get("confidence", 1.0)),
                route=item.get("route"),
                params=dict(params) if isinstance(params, Mapping) else {},
                request_type=item.get("requestType"),
            )
        )
    return intents


def _parse_context(raw: Mapping[str, Any]) -> BaseContext:
    message = raw.get("originalMessage")
    if not isinstance(message, str) or not message.strip():
        raise ValueError("multi-intent context needs a non-empty 'originalMessage'")
    attachments = raw.get("attachments")
    chat_context = raw.get("chatContext")
    return BaseContext(
        original_message=message,
        user_id=str(raw.get("userId") or "anonymous"),
        attachments=[dict(item) for item in attachments if isinstance(item, Mapping)]
        if isinstance(attachments, list)
        else [],
        chat_context=dict(chat_context) if isinstance(chat_context, Mapping) else {},
        request_type=raw.get("requestType"),
        locale=str(raw.get("locale") or "de"),
    )


class RequestHandler:
    """Correlate mailbox requests with dispatch results by ``requestId``."""

    RESPONSE_MESSAGE_TYPE = "ai_worker_response"

    def __init__(
        self,
        *,
        config: WorkerConfig,
        dispatcher: Dispatcher,
        send_response: SendResponseFn,
        orchestrator: Optional[MultiIntentOrchestrator] = None,
        pending_lock: Optional[PendingRequestLock] = None,
        pending_store: Optional[PendingRequestStore] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._config = config
        self._dispatcher = dispatcher
        self._send_response = send_response
        self._orchestrator = orchestrator or MultiIntentOrchestrator(
            dispatcher,
            timeout=config.multi_intent_timeout,
        )
        self._pending_lock = pending_lock
        self._pending_store = pending_store
        self._logger = logger or logging.getLogger("gruenerator_ai.handler")
        self._semaphore = asyncio.Semaphore(config.concurrency)

    async def handle(self, message: MailboxMessage) -> None:
        """Entry point used by the mailbox processor."""
        async with self._semaphore:
            try:
                await self._process_message(message)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pragma: no cover
                self._logger.exception("Unhandled error processing mailbox message %s: %s", message.message_id, exc)

    async def _process_message(self, message: MailboxMessage) -> None:
        payload = message.payload or {}
        message_type = payload.get("type")
        if message_type != "request":
            self._logger.warning("Received unknown message type %r in %s", message_type, message.message_id)
            return

        request_id = payload.get("requestId")
        data = payload.get("data")
        if not isinstance(request_id, str) or not request_id or not isinstance(data, Mapping):
            await self._send_error(
                message,
                request_id=request_id if isinstance(request_id, str) else None,
                code="invalid_payload",
                error_message="Payload must include 'requestId' and a 'data' object",
            )
            return

        locale = data.get("locale") if isinstance(data.get("locale"), str) else None
        if isinstance(data.get("intents"), list):
            await self._process_multi_intent(message, request_id, data)
            return

        try:
            request = CanonicalRequest.from_payload(data)
        except (ValueError, ConfigError) as exc:
            await self._send_error(message, request_id=request_id, code="invalid_payload", error_message=str(exc))
            return

        self._logger.info("Processing request %s of type %s", request_id, request.type)
        try:
            result = await self._dispatcher.dispatch(request_id, request)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            code = exc.code if isinstance(exc, ProviderError) else "dispatch_failed"
            self._logger.error("Error processing request %s (%s): %s", request_id, code, exc)
            await self._send_error(message, request_id=request_id, code=code, error_message=apology_message(locale))
            return

        await self._send(message, {"type": "response", "requestId": request_id, "data": result.to_dict()})

    async def _process_multi_intent(self, message: MailboxMessage, request_id: str, data: Mapping[str, Any]) -> None:
        raw_context = data.get("context") if isinstance(data.get("context"), Mapping) else {}
        try:
            intents = _parse_intents(data["intents"])
            context = _parse_context(raw_context)
        except (TypeError, ValueError) as exc:
            await self._send_error(message, request_id=request_id, code="invalid_payload", error_message=str(exc))
            return

        pending = await self._pending_for(raw_context.get("userId"))
        if pending is not None:
            context.chat_context["pendingRequest"] = pending

        self._logger.info("Processing %s intents for request %s", len(intents), request_id)
        response = await self._orchestrator.process(intents, context, request_id=request_id)
        if response.error is not None:
            await self._send_error(message, request_id=request_id, code=response.code, error_message=response.error)
            return
        payload = response.to_payload()
        if pending is not None:
            payload["pendingRequest"] = pending
        await self._send(message, {"type": "response", "requestId": request_id, "data": payload})

    async def _pending_for(self, user_id: Any) -> Optional[Dict[str, Any]]:
        if self._pending_lock is None or self._pending_store is None:
            return None
        if not isinstance(user_id, str) or not user_id:
            return None
        return await check_pending_request(self._pending_lock, self._pending_store, user_id)

    async def _send(self, message: MailboxMessage, payload: Dict[str, Any]) -> None:
        await self._send_response(
            message.sender,
            payload,
            message_type=self.RESPONSE_MESSAGE_TYPE,
        )

    async def _send_error(
        self,
        message: MailboxMessage,
        *,
        request_id: Optional[str],
        code: Optional[str],
        error_message: str,
    ) -> None:
        await self._send(
            message,
            {
                "type": "error",
                "requestId": request_id,
                "error": error_message,
                "code": code,
            },
        )
