"""Custom exceptions for ctxplan."""


class CtxPlanError(Exception):
    """Base exception for all ctxplan errors."""


class ConfigurationError(CtxPlanError):
    """Invalid request or configuration. The only error plan_context raises."""


class IndexingError(CtxPlanError):
    """A single raw document could not be indexed."""

    def __init__(self, document_id: str, message: str):
        super().__init__(f"{document_id}: {message}")
        self.document_id = document_id
        self.message = message


class CompressionFailure(CtxPlanError):
    """A compression technique could not produce a result."""

    def __init__(self, technique: str, message: str):
        super().__init__(f"{technique} failed: {message}")
        self.technique = technique
        self.message = message


class LLMError(CtxPlanError):
    """LLM provider errors."""


class ProviderNotAvailableError(LLMError):
    """Raised when an LLM provider's SDK is not installed."""

    def __init__(self, provider: str, package: str):
        super().__init__(
            f"Provider '{provider}' requires the '{package}' package. "
            f"Install it with: pip install ctxplan[{provider}]"
        )
