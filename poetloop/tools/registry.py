"""
Tool registry: the tool-execution capability behind the chat orchestrator.
Reads the `tools` block of config.yaml to decide which tools are enabled.
New tools are added here + in config.yaml. Nothing else changes.

A tool is any object with `name`, `description`, `parameters` (JSON schema),
`input_param` and `run(text) -> str`.
"""

import logging
import time

from poetloop.config import get_config
from poetloop.errors import ExternalCapabilityFailure, UnknownTool
from poetloop.tools.calculator import CalculatorTool
from poetloop.tools.datetime_tool import DateTimeTool

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Manages available tools based on configuration."""

    def __init__(self, tools_cfg: dict | None = None):
        self.tools: dict[str, object] = {}
        if tools_cfg is None:
            tools_cfg = get_config().get("tools", {})

        if not tools_cfg.get("enabled", True):
            logger.info("Tools disabled globally")
            return

        if tools_cfg.get("calculator", {}).get("enabled", True):
            self.register(CalculatorTool())

        dt_cfg = tools_cfg.get("datetime", {})
        if dt_cfg.get("enabled", True):
            self.register(DateTimeTool(local_tz_offset=dt_cfg.get("local_tz_offset", 0.0)))

        logger.info("Tool registry loaded: %s", list(self.tools.keys()))

    def register(self, tool) -> None:
        self.tools[tool.name] = tool

    def get(self, name: str):
        """Get a tool by name, or None if not registered."""
        return self.tools.get(name)

    def list_tools(self) -> list[str]:
        """Return names of all registered tools."""
        return list(self.tools.keys())

    def schemas(self) -> list[dict]:
        """OpenAI `tools` array for every registered tool."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in self.tools.values()
        ]

    def run_tool(self, name: str, arguments: dict[str, str]) -> str:
        """
        Run a tool by name and return its text result.
        Raises UnknownTool for an unregistered name and
        ExternalCapabilityFailure if the tool itself blows up.
        """
        tool = self.tools.get(name)
        if tool is None:
            raise UnknownTool(name, self.list_tools())

        if tool.input_param in arguments:
            input_text = arguments[tool.input_param]
        else:
            input_text = " ".join(arguments.values())

        start = time.monotonic()
        try:
            result = tool.run(input_text)
        except Exception as e:
            raise ExternalCapabilityFailure(f"Tool '{name}' failed: {e}") from e
        elapsed_ms = (time.monotonic() - start) * 1000
        logger.debug("Tool %s(%r) -> %d chars in %.1fms", name, input_text, len(result), elapsed_ms)
        return str(result)
