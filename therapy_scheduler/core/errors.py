"""Error taxonomy shared by the scheduling services."""


class SchedulingError(Exception):
    """Base class for scheduling service errors."""


class SchedulingValidationError(SchedulingError, ValueError):
    """Malformed input, rejected before any data store access."""


class NotFoundError(SchedulingError, LookupError):
    """A referenced therapist, client or session does not exist."""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} {entity_id} not found.")


class StoreError(SchedulingError):
    """The data store is unreachable or returned malformed data."""
