from enum import Enum


class CategorizerError(Exception):
    """Base class for every error raised by the categorizer."""


class ConfigurationError(CategorizerError):
    """The run cannot proceed with the current configuration. Not retried."""


class RequestValidationError(CategorizerError):
    """A provider request was rejected before any network call."""


class NoProviderConfiguredError(ConfigurationError):
    def __init__(self, message: str = "No LLM provider configured", *, modified_count: int = 0) -> None:
        super().__init__(message)
        # Pattern-pass writes that were committed before the AI pass was needed.
        self.modified_count = modified_count


class ProviderNotFoundError(ConfigurationError):
    pass


class NoCategoriesAvailableError(ConfigurationError, RequestValidationError):
    def __init__(self, message: str = "No categories available for auto-categorization") -> None:
        super().__init__(message)


class BatchTooLargeError(RequestValidationError):
    def __init__(self, size: int, limit: int) -> None:
        super().__init__(
            f"Too many transactions to auto-categorize: {size} given, max is {limit} per request."
        )
        self.size = size
        self.limit = limit


class ProviderErrorKind(str, Enum):
    CONNECTION = "connection"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    AUTHENTICATION = "authentication"
    STATUS = "status"
    MALFORMED_RESPONSE = "malformed_response"
    UNEXPECTED = "unexpected"


class ProviderError(CategorizerError):
    kind: ProviderErrorKind = ProviderErrorKind.UNEXPECTED

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.status_code = status_code

    def __str__(self) -> str:
        if self.provider:
            return f"[{self.provider}] {self.message}"
        return self.message


class ProviderConnectionError(ProviderError):
    kind = ProviderErrorKind.CONNECTION


class ProviderTimeoutError(ProviderError):
    kind = ProviderErrorKind.TIMEOUT


class ProviderRateLimitError(ProviderError):
    kind = ProviderErrorKind.RATE_LIMIT


class ProviderAuthenticationError(ProviderError):
    kind = ProviderErrorKind.AUTHENTICATION


class ProviderStatusError(ProviderError):
    kind = ProviderErrorKind.STATUS


class MalformedResponseError(ProviderError):
    kind = ProviderErrorKind.MALFORMED_RESPONSE


class ResponseParseError(MalformedResponseError):
    def __init__(self, message: str, *, excerpt: str = "", provider: str | None = None) -> None:
        super().__init__(message, provider=provider)
        self.excerpt = excerpt


class UnexpectedProviderError(ProviderError):
    kind = ProviderErrorKind.UNEXPECTED


class FeedbackError(CategorizerError):
    pass


class TransactionNotFoundError(FeedbackError):
    pass


class NotAICategorizedError(FeedbackError):
    pass


class CategoryNotFoundError(FeedbackError):
    pass
