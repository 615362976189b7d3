class StubsError(RuntimeError):
    """Base class for failures that abort stub generation."""


class ProtocNotFoundError(StubsError):
    """No protoc compiler could be located."""


class GenerationError(StubsError):
    """The compiler could not be run or reported a failure."""
