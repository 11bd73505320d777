"""Agent-facing tool results and the base for tools that drive a session."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, Mapping

from pydantic import BaseModel, ValidationError

from agentshell.errors import ShellError
from agentshell.tool.truncation import truncate_output

if TYPE_CHECKING:
    from agentshell.shell.session import CommandSession

logger = logging.getLogger(__name__)


@dataclass
class ToolResult:
    """What a tool call hands back to the agent loop.

    ``brief`` is a one-line label for logs and UIs.
    """

    output: str = ""
    brief: str = ""
    is_error: bool = False


class ToolOk(ToolResult):
    pass


class ToolError(ToolResult):
    def __init__(self, output: str = "", brief: str = "") -> None:
        super().__init__(output, brief, is_error=True)


class SessionTool(ABC):
    """A tool that acts on one ``CommandSession`` for the agent.

    Subclasses set ``name`` and a pydantic ``params`` model and implement
    ``run()``. Calling the tool never raises for bad arguments or session
    errors; both come back as a ``ToolError``.
    """

    name: ClassVar[str]
    params: ClassVar[type[BaseModel]]

    def __init__(self, session: CommandSession) -> None:
        self.session = session

    async def __call__(self, arguments: Mapping[str, Any]) -> ToolResult:
        try:
            params = self.params.model_validate(arguments)
        except ValidationError as e:
            return ToolError(output=f"Invalid parameters: {e}", brief=f"{self.name}: bad arguments")

        try:
            result = await self.run(params)
        except ShellError as e:
            logger.info("%s failed: %s", self.name, e)
            return ToolError(output=str(e), brief=f"Error: {self.label(params)}")

        result.output = truncate_output(
            result.output, spill_dir=self.session.config.output_path
        )
        return result

    @abstractmethod
    async def run(self, params: Any) -> ToolResult: ...

    def label(self, params: Any) -> str:
        """Short description of a call, used in result briefs."""
        return self.name

    async def close(self) -> None:
        await self.session.terminate()
