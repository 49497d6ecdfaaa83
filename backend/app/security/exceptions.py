"""
Error taxonomy for the two-factor subsystem.

Validation errors are user-correctable and always name the request field
they belong to. Messages never say why a code was rejected.
"""


class FieldValidationError(Exception):
    """A request field failed a check the schema cannot express."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message

    def to_dict(self) -> dict:
        return {"message": self.message, "errors": {self.field: [self.message]}}


class TwoFactorError(Exception):
    """Base class for two-factor failures."""


class TwoFactorValidationError(FieldValidationError, TwoFactorError):
    pass


class TwoFactorStateConflict(TwoFactorValidationError):
    """Operation does not apply to the account's current two-factor state."""


class PasswordConfirmationRequired(TwoFactorError):
    def __init__(self, message: str = "Password confirmation required."):
        super().__init__(message)
        self.message = message


class TwoFactorConcurrencyError(TwoFactorError):
    """The profile changed underneath a read-modify-write sequence."""


class SecretDecryptionError(TwoFactorError):
    """A stored two-factor blob could not be authenticated or decoded."""


class InvalidChallenge(TwoFactorValidationError):
    """The pending login is unknown, expired, used, or no longer needs 2FA."""
