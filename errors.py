"""
Error taxonomy shared by the collectors, the stores and the API layer.

SourceUnavailable is the only retryable failure; retry policy belongs to
whoever schedules collection runs.
"""


class EngineError(Exception):
    """Base class for all engine failures."""
    pass


class SourceUnavailable(EngineError):
    """Upstream metadata fetch failed (transport, auth, quota or timeout)."""
    pass


class InvalidRegion(EngineError):
    """Region code is malformed or not recognized by the upstream."""

    def __init__(self, region_code):
        self.region_code = region_code
        super().__init__(f"Invalid region code: {region_code!r}")


class InvalidCategory(EngineError):
    """Category id is not recognized by the upstream for this region."""

    def __init__(self, category_id, region_code=None):
        self.category_id = category_id
        self.region_code = region_code
        super().__init__(
            f"Invalid category {category_id!r}"
            + (f" for region {region_code}" if region_code else "")
        )


class NotFound(EngineError):
    """Referenced entity (ledger entry, snapshot, topic) does not exist."""

    def __init__(self, entity: str, key):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class ValidationError(EngineError):
    """A required field is missing or malformed in a write request."""
    pass
