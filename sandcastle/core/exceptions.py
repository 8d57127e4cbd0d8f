class SandcastleError(Exception):
    """Base class for errors raised by the import pipeline."""

    # rows already persisted by the run that raised
    imported = 0


class ConfigError(SandcastleError):
    """Missing or malformed configuration. Fatal at startup."""


class AuthenticationError(SandcastleError):
    """Vault ciphertext failed tag verification (tampered blob or wrong key)."""


class AuthError(SandcastleError):
    """Gmail rejected the user's token; the account must be reconnected."""


class TransientProviderError(SandcastleError):
    """Network or rate-limit failure that survived all retries."""


class DecodeError(SandcastleError):
    """A single message body could not be decoded."""

    def __init__(self, message: str, message_id: str = None):
        super().__init__(message)
        self.message_id = message_id


class ImportCancelled(SandcastleError):
    """The run was cancelled or timed out; `imported` rows were flushed first."""

    def __init__(self, imported: int):
        super().__init__(f"Import cancelled after persisting {imported} transaction(s)")
        self.imported = imported
