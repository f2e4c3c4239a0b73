class InvalidIdentifier(ValueError):
    """Raised when an empty or malformed identifier reaches the engine."""

    def __init__(self, value: object, reason: str = "malformed"):
        self.value = value
        self.reason = reason
        super().__init__(f"invalid identifier {value!r}: {reason}")


class EngineCorrupted(RuntimeError):
    """The attempt store broke one of its own invariants.

    Once raised the store refuses every further call; the engine must be rebuilt.
    """
