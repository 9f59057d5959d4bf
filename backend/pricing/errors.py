"""Error taxonomy for the price actions service."""


class PriceActionsError(Exception):
    """Base class for price actions errors surfaced to callers."""


class NotFoundError(PriceActionsError):
    """A job or SKU does not exist."""

    def __init__(self, entity: str, identifier: str):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found: {identifier}")


class InvalidStateError(PriceActionsError):
    """The job is not in a state that allows the requested operation."""

    def __init__(self, current_status: str, action: str):
        self.current_status = current_status
        self.action = action
        super().__init__(f"cannot {action}: current status is {current_status}")

    @property
    def reason(self) -> str:
        return f"current status is {self.current_status}"


class InputValidationError(PriceActionsError, ValueError):
    """Missing or malformed submission / simulation fields."""

    def __init__(self, message: str, fields: list[str] | None = None):
        self.fields = list(fields or [])
        super().__init__(message)


class UpstreamFailure(PriceActionsError):
    """Raw-data retrieval failed; the owning job is marked failed."""


class MalformedRowError(ValueError):
    """A raw watchlist row cannot be turned into an item."""
