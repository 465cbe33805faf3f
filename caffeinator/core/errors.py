"""Exceptions raised synchronously to callers of session commands."""


class CaffeinatorError(Exception):
    """Base exception for caffeinator errors."""
    pass


class SpawnFailure(CaffeinatorError):
    """Raised when the caffeinate process cannot be started."""
    pass


class ProcessNotFound(CaffeinatorError):
    """Raised when a watch target does not resolve to a running process."""

    def __init__(self, target: str):
        super().__init__(f"Process '{target}' not found")
        self.target = target
