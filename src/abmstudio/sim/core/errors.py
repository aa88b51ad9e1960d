from __future__ import annotations


class SimulationError(Exception):
    """Base class for errors raised by the model compiler and engine."""


class CompileError(SimulationError):
    """A model cannot be lowered into a runnable simulation.

    Carries the offending agent type and behavior ids so the editor can point
    at the broken descriptor.
    """

    def __init__(self, message: str, agent_type_id: str | None = None, behavior_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.agent_type_id = agent_type_id
        self.behavior_id = behavior_id

    def to_dict(self) -> dict:
        return {
            "type": "compile-error",
            "message": self.message,
            "agentTypeId": self.agent_type_id,
            "behaviorId": self.behavior_id,
        }


class ConfigurationError(SimulationError):
    """The model has nothing to simulate yet (no agent types or no populations)."""


class RuntimeReferenceError(SimulationError, LookupError):
    def __init__(self, name: str, reason: str = "undefined parameter"):
        super().__init__(f"{reason}: {name!r}")
        self.name = name
        self.reason = reason


class PropertyTypeError(SimulationError, TypeError):
    pass
