"""Concurrent fan-out of multi-intent chat turns."""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

from .errors import apology_message
from .providers.base import CanonicalRequest, RequestOptions
from .providers.messages import DocumentBlock, ImageBlock, Message, TextBlock

LOGGER = logging.getLogger("gruenerator_ai.intents")

DEFAULT_MULTI_INTENT_TIMEOUT = 30.0
MULTI_INTENT_ERROR_CODE = "MULTI_INTENT_PROCESSING_ERROR"


@dataclass(frozen=True)
class Intent:
    """One classified sub-task of a chat turn."""

    agent: str
    confidence: float = 1.0
    route: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)
    request_type: Optional[str] = None


@dataclass
class BaseContext:
    """Turn-level state shared by every intent before isolation."""

    original_message: str
    user_id: str
    attachments: List[Dict[str, Any]] = field(default_factory=list)
    chat_context: Dict[str, Any] = field(default_factory=dict)
    request_type: Optional[str] = None
    locale: str = "de"


@dataclass(frozen=True)
class IntentOutcome:
    success: bool
    agent: str
    confidence: float
    processing_index: int
    content: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "agent": self.agent,
            "confidence": self.confidence,
            "processingIndex": self.processing_index,
        }
        if self.success:
            payload["content"] = self.content
        else:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class MultiIntentResponse:
    success: bool
    results: List[IntentOutcome]
    total_intents: int
    successful_intents: int
    failed_intents: int
    execution_type: str = "parallel"
    error: Optional[str] = None
    code: Optional[str] = None

    @property
    def timed_out(self) -> bool:
        return self.code == MULTI_INTENT_ERROR_CODE

    def to_payload(self) -> Dict[str, Any]:
        if self.error is not None:
            return {"success": False, "error": self.error, "code": self.code}
        return {
            "success": self.success,
            "multiResponse": True,
            "results": [outcome.to_dict() for outcome in self.results],
            "metadata": {
                "totalIntents": self.total_intents,
                "successfulIntents": self.successful_intents,
                "failedIntents": self.failed_intents,
                "executionType": self.execution_type,
            },
        }


class ParameterExtractor(Protocol):
    """Upstream NLP collaborator extracting agent-specific parameters."""

    async def extract(self, message: str, agent: str, chat_context: Mapping[str, Any]) -> Dict[str, Any]:
        """Return parameters for ``agent`` found in ``message``."""


class PassthroughParameterExtractor(ParameterExtractor):
    """Extractor used when no NLP collaborator is wired in."""

    async def extract(self, message: str, agent: str, chat_context: Mapping[str, Any]) -> Dict[str, Any]:
        return {}


class RequestBuilder(Protocol):
    def __call__(self, intent: Intent, params: Mapping[str, Any], context: BaseContext) -> CanonicalRequest: ...


class Dispatch(Protocol):
    async def dispatch(self, request_id: str, request: CanonicalRequest): ...


def _attachment_block(attachment: Mapping[str, Any]):
    media_type = str(attachment.get("type") or attachment.get("media_type") or "")
    name = attachment.get("name")
    data = attachment.get("data")
    if media_type.startswith("image/") and data:
        return ImageBlock(media_type=media_type, data=str(data), name=name)
    return DocumentBlock(
        media_type=media_type or None,
        data=data,
        url=attachment.get("url"),
        name=name,
        text=attachment.get("text"),
    )


def build_intent_request(intent: Intent, params: Mapping[str, Any], context: BaseContext) -> CanonicalRequest:
    """Default request for one intent: the user's message plus attachments."""
    blocks = [TextBlock(context.original_message)]
    blocks.extend(_attachment_block(item) for item in context.attachments if isinstance(item, Mapping))
    content = tuple(blocks) if len(blocks) > 1 else context.original_message

    merged = copy.deepcopy({**params, **intent.params})
    options = merged.get("options")
    return CanonicalRequest(
        type=intent.request_type or context.request_type or intent.agent,
        messages=(Message(role="user", content=content),),
        options=RequestOptions.from_dict(options if isinstance(options, Mapping) else None),
        system_prompt=merged.get("systemPrompt") or None,
        metadata={
            **{key: value for key, value in merged.items() if key not in {"options", "systemPrompt"}},
            "agent": intent.agent,
            "userId": context.user_id,
            "route": intent.route,
        },
    )


class MultiIntentOrchestrator:
    """Run every intent of a turn concurrently under one deadline."""

    def __init__(
        self,
        dispatcher: Dispatch,
        *,
        extractor: Optional[ParameterExtractor] = None,
        request_builder: RequestBuilder = build_intent_request,
        timeout: float = DEFAULT_MULTI_INTENT_TIMEOUT,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._extractor = extractor or PassthroughParameterExtractor()
        self._build_request = request_builder
        self._timeout = timeout
        self._logger = logger or LOGGER

    async def _process_intent(
        self,
        intent: Intent,
        index: int,
        base_context: BaseContext,
        request_id: str,
    ) -> IntentOutcome:
        # Each task gets its own copy; nothing mutable is shared between siblings.
        context = copy.deepcopy(base_context)
        try:
            params = await self._extractor.extract(context.original_message, intent.agent, context.chat_context)
            context = replace(context, request_type=intent.request_type or context.request_type)
            request = self._build_request(intent, params, context)
            result = await self._dispatcher.dispatch(f"{request_id}:{index}", request)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.error("Intent %s (%s) failed for %s: %s", index, intent.agent, request_id, exc)
            return IntentOutcome(
                success=False,
                agent=intent.agent,
                confidence=intent.confidence,
                processing_index=index,
                error=str(exc) or type(exc).__name__,
            )
        return IntentOutcome(
            success=True,
            agent=intent.agent,
            confidence=intent.confidence,
            processing_index=index,
            content=result.to_dict(),
        )

    def _discard_straggler(self, request_id: str) -> Callable[[asyncio.Future], None]:
        def _done(task: asyncio.Future) -> None:
            if task.cancelled():
                self._logger.debug("Late intent task for %s cancelled", request_id)
                return
            exc = task.exception()
            if exc is not None:
                self._logger.warning("Late intent task for %s failed after timeout: %s", request_id, exc)
            else:
                self._logger.debug("Discarding late intent result for %s", request_id)

        return _done

    async def process(
        self,
        intents: Sequence[Intent],
        base_context: BaseContext,
        *,
        request_id: str,
    ) -> MultiIntentResponse:
        self._logger.debug("Starting parallel processing of %s intents for %s", len(intents), request_id)
        tasks = [
            asyncio.ensure_future(self._process_intent(intent, index, base_context, request_id))
            for index, intent in enumerate(intents)
        ]
        if not tasks:
            return MultiIntentResponse(
                success=False, results=[], total_intents=0, successful_intents=0, failed_intents=0
            )

        _, pending = await asyncio.wait(tasks, timeout=self._timeout)
        if pending:
            # Stragglers are cancelled but not awaited; their results are discarded.
            for task in pending:
                task.add_done_callback(self._discard_straggler(request_id))
                task.cancel()
            self._logger.error(
                "Multi-intent processing timeout after %ss for %s (%s of %s intents unfinished)",
                self._timeout,
                request_id,
                len(pending),
                len(tasks),
            )
            return MultiIntentResponse(
                success=False,
                results=[],
                total_intents=len(tasks),
                successful_intents=0,
                failed_intents=len(tasks),
                error=apology_message(base_context.locale),
                code=MULTI_INTENT_ERROR_CODE,
            )

        results = sorted((task.result() for task in tasks), key=lambda outcome: outcome.processing_index)
        successful = sum(1 for outcome in results if outcome.success)
        self._logger.debug(
            "Multi-intent processing completed for %s: %s successful, %s failed",
            request_id,
            successful,
            len(results) - successful,
        )
        return MultiIntentResponse(
            success=successful > 0,
            results=results,
            total_intents=len(results),
            successful_intents=successful,
            failed_intents=len(results) - successful,
        )
