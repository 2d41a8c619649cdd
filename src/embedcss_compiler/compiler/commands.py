"""`compile` command handler.

Request:  {"Command": "compile", "Args": [source, optionsJSON]}
Response: {"Code": str, "Styles": str}
Failure:  {"Error": true, "Msg": str}
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..protocol import PacketRouter, Request
from .css import CompileError
from .parser import CompilerOptions, parse

logger = logging.getLogger(__name__)

COMPILE_COMMAND = "compile"


class CompileResult(BaseModel):
    """Successful compile output."""

    model_config = ConfigDict(populate_by_name=True)

    code: str = Field(alias="Code")
    styles: str = Field(alias="Styles")

    def to_value(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


def compile_command(request: Request) -> dict[str, Any]:
    """Handle a compile request. Runs on a worker thread."""
    logger.debug("received command: compile")

    if len(request.args) != 2:
        raise CompileError(f"compile expected 2 arguments, got {len(request.args)}")
    source, options_json = request.args

    try:
        options = CompilerOptions.model_validate_json(options_json)
    except ValidationError as e:
        raise CompileError(f"compile failed to parse options: {e}") from e

    code, styles = parse(source, options)
    return CompileResult(code=code, styles=styles).to_value()


def register_commands(router: PacketRouter) -> None:
    """Register the compiler's commands on a router."""
    router.register(COMPILE_COMMAND, compile_command)
