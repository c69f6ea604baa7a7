"""Pipeline exception taxonomy shared by providers, modes, and orchestrators."""


class ConfigurationError(Exception):
    """Tenant or process configuration cannot be used. Tenant work is skipped, request stays PENDING."""

    pass


class UnknownEmbeddingModelError(ConfigurationError):
    """No provider registered for the model name."""

    pass


class MissingProviderCredentialsError(ConfigurationError):
    """Provider needs credentials that are not configured."""

    pass


class ProviderError(RuntimeError):
    """Provider call failed: network, timeout, non-2xx, or malformed response."""

    pass


class BatchJobFailedError(ProviderError):
    """Provider batch reached a terminal failure state (failed, cancelled, expired)."""

    def __init__(self, batch_id: str, status: str, message: str | None = None) -> None:
        self.batch_id = batch_id
        self.status = status
        super().__init__(message or f"batch {batch_id} ended with status={status}")
