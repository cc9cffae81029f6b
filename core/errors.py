"""
Shared error types for core services.
"""


class ValidationIssue(ValueError):
    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        error_code: str | None = None,
        data: dict | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.error_type = error_type
        self.error_code = error_code
        self.data = data


class GraphRecordNotFoundError(LookupError):
    """Raised when an entity, observation or relation does not exist."""

    def __init__(self, kind: str, record_id):
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id


class EmbeddingProviderError(RuntimeError):
    """Raised when the embedding provider call fails."""
