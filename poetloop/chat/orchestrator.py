"""
Chat orchestrator — one exchange with the generation backend, tool calls
resolved before the final reply.

Loop protocol:
  1. Send the whole exchange (plus tool schemas) to the backend.
  2. If the reply carries tool_calls, run each one in order, append the
     assistant message and one tool message per call, and go again.
  3. Stop on a reply with content and no tool calls.

Limits and failures:
  - more than max_tool_rounds tool rounds  -> ToolLoopExceeded
  - reply with no content and no tool calls -> EmptyResponse
  - backend error / timeout                 -> ExternalCapabilityFailure
  - unknown tool name                       -> error text in the tool reply

No persistence happens here; callers store whatever they need.
"""

from __future__ import annotations

import logging

from poetloop.backends.base import BaseBackend
from poetloop.chat.messages import (
    AssistantMessage,
    ChatMessage,
    ToolCall,
    ToolMessage,
    assistant_from_openai,
    drop_orphan_tool_replies,
    to_openai,
)
from poetloop.errors import (
    EmptyResponse,
    ExternalCapabilityFailure,
    InvalidRequest,
    ToolLoopExceeded,
    UnknownTool,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_ROUNDS = 8


class ChatOrchestrator:
    """Drives the request/response loop against a backend and a tool registry."""

    def __init__(
        self,
        backend: BaseBackend,
        tool_registry=None,
        model: str = "",
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
        temperature: float | None = None,
    ):
        self.backend = backend
        self.tool_registry = tool_registry
        self.model = model
        self.max_tool_rounds = max_tool_rounds
        self.temperature = temperature

    def _build_body(self, exchange: list[ChatMessage], use_tools: bool) -> dict:
        body: dict = {
            "model": self.model,
            "messages": [to_openai(m) for m in exchange],
            "stream": False,
        }
        if self.temperature is not None:
            body["temperature"] = self.temperature
        if use_tools and self.tool_registry is not None:
            schemas = self.tool_registry.schemas()
            if schemas:
                body["tools"] = schemas
        return body

    async def _generate(self, exchange: list[ChatMessage], use_tools: bool) -> AssistantMessage:
        resp = await self.backend.forward(self._build_body(exchange, use_tools))
        if not resp.ok:
            raise ExternalCapabilityFailure(
                f"Generation backend '{resp.backend_name or self.backend.name}' failed: {resp.error}"
            )
        try:
            return assistant_from_openai(resp.message)
        except InvalidRequest as e:
            raise ExternalCapabilityFailure(f"Backend returned a malformed tool call: {e}") from e

    def _resolve(self, call: ToolCall) -> ToolMessage:
        name = call.function.name
        if self.tool_registry is None:
            result = str(UnknownTool(name))
        else:
            try:
                result = self.tool_registry.run_tool(name, call.function.arguments_dict())
            except UnknownTool as e:
                logger.warning("Model called unknown tool '%s'", name)
                result = str(e)
        logger.info("Tool call %s -> %s (%d chars)", call.id, name, len(result))
        return ToolMessage(content=result, tool_call_id=call.id)

    async def run(self, messages: list[ChatMessage], use_tools: bool = True) -> str:
        """Run one exchange and return the final assistant content."""
        exchange = drop_orphan_tool_replies(list(messages))
        if not exchange:
            raise InvalidRequest("Cannot chat with an empty message list")

        for round_no in range(self.max_tool_rounds + 1):
            reply = await self._generate(exchange, use_tools)

            if reply.tool_calls:
                if round_no == self.max_tool_rounds:
                    raise ToolLoopExceeded(self.max_tool_rounds)
                logger.debug(
                    "Round %d: %d tool call(s) requested", round_no + 1, len(reply.tool_calls)
                )
                exchange.append(reply)
                exchange.extend(self._resolve(call) for call in reply.tool_calls)
                continue

            if reply.content and reply.content.strip():
                return reply.content

            raise EmptyResponse("Generation backend returned an empty reply")

        # Unreachable: the last round either returns or raises.
        raise ToolLoopExceeded(self.max_tool_rounds)
