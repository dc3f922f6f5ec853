"""Request/response channel for interactive tool approval.

The mediator posts an ApprovalRequest and parks on its future until a
decision arrives, either from the registered handler or from an external
``resolve()`` call (e.g. a UI answering by request id). Cancelling the
channel resolves every pending request as a deny so nothing is left
hanging.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from .config import ApprovalCallback
from .errors import ApprovalFlowFailure
from .models import ApprovalDecision

logger = logging.getLogger(__name__)


@dataclass
class ApprovalRequest:
    """One outstanding "approval needed" message."""
    tool_name: str
    tool_input: dict[str, Any]
    description: str = ""
    context: Any = None
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    cancelled: bool = False


def coerce_decision(value: Any) -> ApprovalDecision:
    if isinstance(value, ApprovalDecision):
        return value
    if isinstance(value, str):
        return ApprovalDecision(value)
    raise ValueError(f"Unrecognized approval decision: {value!r}")


class ApprovalChannel:
    """Parks approval requests on futures until a decision arrives."""

    def __init__(self, handler: ApprovalCallback | None = None) -> None:
        self._handler = handler
        self._pending: dict[str, tuple[ApprovalRequest, asyncio.Future]] = {}
        self._handler_tasks: dict[str, asyncio.Task] = {}

    @property
    def has_handler(self) -> bool:
        return self._handler is not None

    def set_handler(self, handler: ApprovalCallback | None) -> None:
        self._handler = handler

    @property
    def pending(self) -> list[ApprovalRequest]:
        return [request for request, _ in self._pending.values()]

    async def request(
        self,
        tool_name: str,
        tool_input: dict[str, Any],
        context: Any = None,
        description: str = "",
    ) -> ApprovalDecision:
        """Post a request and wait for its decision.

        Raises ApprovalFlowFailure if the handler raised or answered with
        something that is not a decision.
        """
        loop = asyncio.get_running_loop()
        request = ApprovalRequest(
            tool_name=tool_name,
            tool_input=tool_input,
            description=description,
            context=context,
        )
        future: asyncio.Future = loop.create_future()
        self._pending[request.request_id] = (request, future)
        logger.debug(
            "APPROVAL_REQUEST id=%s tool=%s", request.request_id[:8], tool_name,
        )

        if self._handler is not None:
            self._handler_tasks[request.request_id] = asyncio.create_task(
                self._run_handler(request, future)
            )

        try:
            return await future
        finally:
            self._pending.pop(request.request_id, None)
            task = self._handler_tasks.pop(request.request_id, None)
            if task is not None and not task.done():
                task.cancel()
            if not future.done():
                # The waiter itself was cancelled.
                future.set_result(ApprovalDecision.DENY)

    async def _run_handler(self, request: ApprovalRequest, future: asyncio.Future) -> None:
        try:
            raw = await self._handler(request.tool_name, request.tool_input, request.context)
            decision = coerce_decision(raw)
        except asyncio.CancelledError:
            if not future.done():
                future.set_result(ApprovalDecision.DENY)
            raise
        except Exception as exc:
            logger.warning(
                "APPROVAL_HANDLER_FAILED id=%s tool=%s: %s",
                request.request_id[:8], request.tool_name, exc,
            )
            if not future.done():
                future.set_exception(ApprovalFlowFailure(request.tool_name, exc))
            return
        if not future.done():
            future.set_result(decision)

    def resolve(self, request_id: str, decision: ApprovalDecision | str) -> bool:
        """Deliver a decision for a pending request. Returns False if unknown."""
        entry = self._pending.get(request_id)
        if entry is None:
            return False
        _, future = entry
        if future.done():
            return False
        future.set_result(coerce_decision(decision))
        return True

    def cancel_all(self) -> int:
        """Resolve every pending request as a deny. Returns how many."""
        count = 0
        for request, future in list(self._pending.values()):
            if future.done():
                continue
            request.cancelled = True
            future.set_result(ApprovalDecision.DENY)
            count += 1
        if count:
            logger.info("APPROVAL_CANCELLED pending=%d", count)
        return count
