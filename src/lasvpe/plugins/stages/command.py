# src/lasvpe/plugins/stages/command.py
"""The planner exposed as a stage: consumes COMMAND payloads, starts tasks."""

from typing import ClassVar

from pydantic import JsonValue

from lasvpe.contracts.errors import FatalStageError, UnsupportedCommandError
from lasvpe.contracts.payloads import CommandPayload, Payload
from lasvpe.contracts.plan import Port
from lasvpe.core.planner import PLANNER_STAGE, Planner, Ports
from lasvpe.plugins.base import BaseStage
from lasvpe.plugins.context import StageContext


class CommandStage(BaseStage):
    """Plans each received command and publishes the initial envelopes of its tasks.

    Task ids derive from the command's request id, so a retried attempt
    republishes the tasks an earlier attempt already sent under the same ids.
    """

    name = PLANNER_STAGE
    ports: ClassVar[tuple[Port, ...]] = (Ports.COMMAND,)

    def __init__(self, context: StageContext) -> None:
        super().__init__(context)
        if context.publisher is None:
            raise ValueError(f"Stage {self.name!r} needs a publisher in its context")
        self._planner = Planner(context.store, context.publisher, executor=context.executor)

    def process(self, exec_param: JsonValue, payload: Payload) -> None:
        command = self.expect(payload, CommandPayload)
        try:
            self._planner.submit(command.command, command.params, request_id=command.request_id)
        except (UnsupportedCommandError, ValueError) as e:
            raise FatalStageError(f"Cannot plan command {command.command!r}: {e}") from e
