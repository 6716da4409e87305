"""Exception types shared across the broker."""


class ConfigurationError(RuntimeError):
    """Raised when required server configuration is missing or unusable."""


class AuthenticationError(Exception):
    """Raised when submitted credentials or second factors are rejected."""


class TokenExchangeError(Exception):
    """Raised when a login token cannot be exchanged for an access token."""

    status_code = 401

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class MissingTokenError(TokenExchangeError):
    """The verify request carried no token."""

    status_code = 400

    def __init__(self) -> None:
        super().__init__("token is required")


class InvalidTokenError(TokenExchangeError):
    """Signature, expiry, issuer or audience checks failed."""

    def __init__(self) -> None:
        super().__init__("Invalid or expired token")


class SubjectMismatchError(TokenExchangeError):
    """The token subject does not belong to the configured principal."""

    def __init__(
        self, reason: str = "Token sub does not match configured user"
    ) -> None:
        super().__init__(reason)


class TokenReplayedError(TokenExchangeError):
    """The token identifier was already exchanged once."""

    def __init__(self) -> None:
        super().__init__("Token has already been used")
