# src/lasvpe/plugins/base.py
"""Base class for stage implementations.

Stages MUST subclass BaseStage:
- Plugin discovery checks issubclass() against it
- __init_subclass__ enforces that a stage only declares its own ports

Lifecycle (driven by the hosting worker):
    __init__(context) -> on_start() -> process()* -> close()

process() may run more than once for one input (retries) and concurrently
for different tasks; keep per-task state out of instance attributes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar, TypeVar

from pydantic import JsonValue

from lasvpe.contracts.errors import FatalStageError
from lasvpe.contracts.payloads import Payload
from lasvpe.contracts.plan import Port
from lasvpe.contracts.stage import StageResult
from lasvpe.plugins.context import StageContext

P = TypeVar("P")


class BaseStage(ABC):
    """Base class for algorithm stages.

    Subclass and implement process():

        class Blur(BaseStage):
            name = "blur"
            ports = (Port(stage="blur", kind=DataKind.FRAME_ARRAY),)

            def process(self, exec_param, payload):
                frames = self.expect(payload, FrameArrayPayload)
                return frames.model_copy(update={"frames": blur(frames.frames)})
    """

    name: ClassVar[str]
    ports: ClassVar[tuple[Port, ...]] = ()
    resolve_references: ClassVar[bool] = True

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if "name" not in cls.__dict__:
            return
        foreign = [str(port) for port in cls.ports if port.stage != cls.name]
        if foreign:
            raise TypeError(f"Stage {cls.__name__} ({cls.name!r}) declares ports of other stages: {foreign}")

    def __init__(self, context: StageContext) -> None:
        self.context = context

    @abstractmethod
    def process(self, exec_param: JsonValue, payload: Payload) -> StageResult:
        """Run the algorithm on one payload."""
        ...

    def on_start(self) -> None:  # noqa: B027 - optional hook
        """Called once before the first process()."""

    def close(self) -> None:  # noqa: B027 - optional hook
        """Release resources."""

    def expect(self, payload: Payload, *types: type[P]) -> P:
        """Narrow ``payload`` to one of ``types``.

        Raises:
            FatalStageError: The payload is of another variant
        """
        if isinstance(payload, types):
            return payload
        expected = ", ".join(t.__name__ for t in types)
        raise FatalStageError(f"Stage {self.name!r} expects {expected}, got {type(payload).__name__}")
