from typing import Optional


class FolioError(Exception):
    """Base class for domain errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str, *, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or message


# Actor does not own the conversation the target belongs to
class AuthorizationError(FolioError):
    status_code = 403

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class NotFoundError(FolioError):
    status_code = 404

    def __init__(self, kind: str, identifier: Optional[str] = None):
        message = f"{kind} not found" if identifier is None else f"{kind} not found: {identifier}"
        super().__init__(message)
        self.kind = kind
        self.identifier = identifier


# Another generation for this conversation is still running in this process
class GenerationInProgressError(FolioError):
    status_code = 409

    def __init__(self, conversation_id: str):
        super().__init__(f"A response is already being generated for conversation {conversation_id}")
        self.conversation_id = conversation_id


class ApiKeyDecryptionError(FolioError):
    status_code = 500

    def __init__(self, provider: str):
        super().__init__(f"Failed to decrypt API key for provider '{provider}'", detail="Failed to decrypt data.")
        self.provider = provider
