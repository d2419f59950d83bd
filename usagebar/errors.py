"""Error taxonomy shared by every provider, plus store/engine errors."""


class ProviderError(Exception):
    """Base class for everything a provider's configure/fetch can raise."""


class NotConfigured(ProviderError):
    def __init__(self):
        super().__init__("Provider not configured")


class InvalidCredentials(ProviderError):
    def __init__(self):
        super().__init__("Invalid credentials")


class NetworkError(ProviderError):
    def __init__(self, cause: Exception | str):
        self.cause = cause
        super().__init__(f"Network error: {cause}")


class ParseError(ProviderError):
    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Parse error: {detail}")


class RateLimited(ProviderError):
    def __init__(self):
        super().__init__("Rate limited")


class ServerError(ProviderError):
    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"Server error: HTTP {status_code}")


class UnknownError(ProviderError):
    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class NoProvidersConfigured(ProviderError):
    def __init__(self):
        super().__init__("No providers configured")


class CredentialStoreError(Exception):
    """The OS credential vault refused a save or delete."""

    def __init__(self, action: str, provider_id: str, cause: Exception):
        self.action = action
        self.provider_id = provider_id
        self.cause = cause
        super().__init__(f"Failed to {action} credentials for {provider_id}: {cause}")
