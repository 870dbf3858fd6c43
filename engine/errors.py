"""Exception types raised by the measurement engine."""
from __future__ import annotations


class EngineError(Exception):
    """Base class for every error the engine raises on purpose."""


class ConfigError(EngineError, ValueError):
    """A :class:`~engine.config.TestConfig` field is missing or out of range."""


class TestAborted(EngineError):
    """A run was unwound to IDLE before producing a result.

    Raised to whoever awaits :meth:`engine.phases.PhaseStateMachine.run`.
    The original failure, if any, is chained as ``__cause__``.
    """

    __test__ = False  # keep pytest from collecting this as a test class

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason
