from __future__ import annotations


class StackDeployError(Exception):
    """Base class for failures raised while preparing or deploying a stack."""


class ConfigurationError(StackDeployError):
    """A module option is missing or cannot be interpreted."""


class DocumentError(StackDeployError):
    def __init__(self, message, filepath: str | None = None):
        super().__init__(message)
        self.filepath = filepath


class RenderError(StackDeployError):
    pass


class PreconditionError(StackDeployError):
    """The requested operation cannot run with the data at hand."""
