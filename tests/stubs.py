"""
Test doubles: a scripted generation backend and reply builders.
"""

import asyncio

from poetloop.backends.base import BaseBackend, BackendResponse


def reply(content=None, tool_calls=None) -> BackendResponse:
    """A successful chat-completions response."""
    message = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return BackendResponse(ok=True, data={"choices": [{"message": message}]}, backend_name="stub")


def tool_call(call_id: str, name: str, arguments: str = "{}") -> dict:
    return {"id": call_id, "type": "function", "function": {"name": name, "arguments": arguments}}


def failure(error="boom", status_code=500) -> BackendResponse:
    return BackendResponse(ok=False, status_code=status_code, error=error, backend_name="stub")


def poet_reply(title="Ashtray Sonnet", poem="line1\nline2", next_prompt="write about rain") -> str:
    return f"POEM: {poem}\nTITLE: {title}\nNEXT: {next_prompt}"


class ScriptedBackend(BaseBackend):
    """Returns the scripted responses in order; the last one repeats."""

    def __init__(self, *responses):
        super().__init__(name="stub", url="http://stub")
        self.responses = [r if isinstance(r, BackendResponse) else reply(r) for r in responses]
        self.bodies: list[dict] = []

    async def forward(self, body: dict) -> BackendResponse:
        self.bodies.append(body)
        index = min(len(self.bodies) - 1, len(self.responses) - 1)
        return self.responses[index]


class GatedBackend(ScriptedBackend):
    """ScriptedBackend that parks every call until `gate` is set."""

    def __init__(self, *responses):
        super().__init__(*responses)
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def forward(self, body: dict) -> BackendResponse:
        self.entered.set()
        await self.gate.wait()
        return await super().forward(body)
