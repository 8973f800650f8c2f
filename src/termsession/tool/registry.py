"""Tool registry — name-keyed table of terminal tools for the stdio loop."""

from __future__ import annotations

import logging
from typing import Any

from termsession.tool.base import BaseTool

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Maps tool-call names to tool instances.

    The serve loop hands every request's ``(name, arguments)`` to
    ``dispatch``; ``get_specs`` feeds the ``tools`` command.
    """

    def __init__(self) -> None:
        self._tools: dict[str, BaseTool] = {}

    def register_many(self, tools: list[BaseTool]) -> None:
        for tool in tools:
            if tool.name in self._tools:
                logger.warning("Tool %s already registered, overwriting", tool.name)
            self._tools[tool.name] = tool

    def get_specs(self) -> list[dict[str, Any]]:
        """OpenAI function specs of every tool, in registration order."""
        return [t.to_openai_spec() for t in self._tools.values()]

    def names(self) -> list[str]:
        return list(self._tools)

    async def dispatch(self, name: str, arguments: dict[str, Any]) -> tuple[str, bool]:
        """Run the named tool.

        Unknown names are reported as an error result rather than raised,
        like every other tool failure.

        Returns:
            (content, is_error) tuple.
        """
        tool = self._tools.get(name)
        if tool is None:
            return (
                f"Unknown tool: {name}. Available tools: {', '.join(self.names())}",
                True,
            )
        logger.debug("Dispatching %s", name)
        return await tool(arguments)
