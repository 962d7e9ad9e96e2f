"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""


class PromptCreditError(Exception):
    """Base exception for all credit and access errors."""

    pass


class InvalidRequestError(PromptCreditError):
    """Raised when request fields are missing or malformed."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InsufficientCreditsError(PromptCreditError):
    """Raised when the available balance is below the operation cost."""

    def __init__(self, balance: int, required: int) -> None:
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient credits. Balance: {balance}, Required: {required}")


class AccountNotFoundError(PromptCreditError):
    """Raised when an operation needs an account row that doesn't exist."""

    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class AuthenticationError(PromptCreditError):
    """Raised when a credential is missing, invalid or expired."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class AuthorizationError(PromptCreditError):
    """Raised when an authenticated user lacks the required tier."""

    def __init__(self, required_tier: str) -> None:
        self.required_tier = required_tier
        super().__init__(f"Authorization failed: requires {required_tier} tier")


class StorageError(PromptCreditError):
    """Raised when a persisted-store read or write fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Storage error: {message}")


class GenerationError(PromptCreditError):
    """Raised when the language model provider fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Generation error: {message}")
