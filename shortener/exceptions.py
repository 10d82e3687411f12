"""Error taxonomy for short-link allocation and resolution.

Every failure the core surfaces to its callers is a subclass of
``ShortenerError``. The HTTP layer maps them to status codes; the core never
deals with transport concerns.

Classes:
    ShortenerError:
        Base class for all service errors.

    InvalidURLError:
        The original URL is not an absolute http(s) URL.

    AliasExistsError:
        A custom alias collides with an existing short code or alias.

    CodeSpaceExhaustedError:
        No free short code was found within the retry budget. Transient, the
        whole request may be retried.

    URLNotFoundError / URLExpiredError / URLInactiveError:
        The code does not exist, or exists but cannot redirect.

    UnauthorizedError:
        Ownership check failed on a mutating operation.

    InvalidPasswordError:
        Wrong password for a protected link.

    OperationTimeoutError:
        A store call exceeded its deadline.

    DuplicateShortCodeError:
        Raised by the store when its uniqueness constraint rejects an insert.
"""

__all__ = [
    "ShortenerError",
    "InvalidURLError",
    "AliasExistsError",
    "CodeSpaceExhaustedError",
    "URLNotFoundError",
    "URLExpiredError",
    "URLInactiveError",
    "UnauthorizedError",
    "InvalidPasswordError",
    "OperationTimeoutError",
    "DuplicateShortCodeError",
]


class ShortenerError(Exception):
    """Base class for all short-link service errors."""


class InvalidURLError(ShortenerError):
    def __init__(self, url: str) -> None:
        super().__init__(f"Invalid URL: {url!r}")
        self.url = url


class AliasExistsError(ShortenerError):
    def __init__(self, alias: str) -> None:
        super().__init__(f"Custom alias '{alias}' already exists")
        self.alias = alias


class CodeSpaceExhaustedError(ShortenerError):
    def __init__(self, attempts: int) -> None:
        super().__init__(f"No free short code found after {attempts} attempts")
        self.attempts = attempts


class URLNotFoundError(ShortenerError):
    def __init__(self, key: str) -> None:
        super().__init__(f"Short URL '{key}' not found")
        self.key = key


class URLExpiredError(ShortenerError):
    def __init__(self, short_code: str) -> None:
        super().__init__(f"Short URL '{short_code}' has expired")
        self.short_code = short_code


class URLInactiveError(ShortenerError):
    def __init__(self, short_code: str) -> None:
        super().__init__(f"Short URL '{short_code}' is no longer active")
        self.short_code = short_code


class UnauthorizedError(ShortenerError):
    def __init__(self, url_id: str) -> None:
        super().__init__(f"Not allowed to modify URL '{url_id}'")
        self.url_id = url_id


class InvalidPasswordError(ShortenerError):
    def __init__(self, short_code: str) -> None:
        super().__init__(f"Invalid password for '{short_code}'")
        self.short_code = short_code


class OperationTimeoutError(ShortenerError):
    def __init__(self, operation: str, timeout: float) -> None:
        super().__init__(f"Store operation '{operation}' timed out after {timeout}s")
        self.operation = operation
        self.timeout = timeout


class DuplicateShortCodeError(ShortenerError):
    def __init__(self, short_code: str) -> None:
        super().__init__(f"Short code '{short_code}' violates the uniqueness constraint")
        self.short_code = short_code
