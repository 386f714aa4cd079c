"""Error taxonomy for draft sync and publication.

Every failure raised by the sync core derives from BinderyError and carries
a short machine-readable code next to the human message.
"""

__all__ = [
    "BinderyError",
    "NotAuthenticated",
    "NotFound",
    "NoRelaysConfigured",
    "InvalidRelayUrl",
    "StorageError",
    "SignerUnavailable",
    "UserRejected",
    "SignFailed",
    "EncryptFailed",
    "PayloadTooLarge",
    "DecryptFailed",
    "MalformedPayload",
    "UnsupportedVersion",
    "TransportFailed",
    "SyncTimeout",
]


class BinderyError(Exception):
    """Base class for all Bindery errors."""

    code = "error"

    def __init__(self, message: str, cause: BaseException | None = None):
        self.message = message
        self.cause = cause
        super().__init__(f"[{self.code}] {message}")


class NotAuthenticated(BinderyError):
    code = "not_authenticated"

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class NotFound(BinderyError):
    code = "not_found"


class NoRelaysConfigured(BinderyError):
    code = "no_relays"

    def __init__(self, message: str = "No relays configured for draft sync"):
        super().__init__(message)


class InvalidRelayUrl(BinderyError):
    code = "invalid_relay_url"


class StorageError(BinderyError):
    code = "storage"


# Signer errors
class SignerUnavailable(BinderyError):
    code = "signer_unavailable"


class UserRejected(BinderyError):
    code = "user_rejected"


class SignFailed(BinderyError):
    code = "sign_failed"


# Codec errors
class EncryptFailed(BinderyError):
    code = "encrypt_failed"


class PayloadTooLarge(EncryptFailed):
    code = "payload_too_large"

    def __init__(self, message: str = "Draft snapshot too large to encrypt", cause=None):
        super().__init__(message, cause)


class DecryptFailed(BinderyError):
    code = "decrypt_failed"


class MalformedPayload(BinderyError):
    code = "malformed_payload"


class UnsupportedVersion(MalformedPayload):
    code = "unsupported_version"


class TransportFailed(BinderyError):
    """A single relay could not be reached or refused an event."""

    code = "transport_failed"

    def __init__(self, relay: str, message: str, cause: BaseException | None = None):
        self.relay = relay
        super().__init__(f"{relay}: {message}", cause)


class SyncTimeout(BinderyError):
    code = "timeout"
