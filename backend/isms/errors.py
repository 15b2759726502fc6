from typing import List, Optional


class ISMSError(Exception):
    """Base class for domain errors mapped to HTTP responses in main.

    ``public_message`` is what clients see unless ``expose`` is set, in which
    case the instance message is returned as is.
    """

    status_code = 500
    public_message = "Internal error"
    expose = False

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)


class IntakeValidationError(ISMSError):
    status_code = 400
    public_message = "Missing required fields"

    def __init__(self, missing: List[str]):
        super().__init__(f"Missing required fields: {', '.join(missing)}")
        self.missing = list(missing)


class BadRequestError(ISMSError):
    status_code = 400
    public_message = "Bad request"
    expose = True


class UpstreamGenerationError(ISMSError):
    status_code = 502
    public_message = "Failed to generate draft scope"
    retryable = False


class UpstreamTimeoutError(UpstreamGenerationError):
    status_code = 504
    retryable = True


class ModelConfigurationError(ISMSError):
    public_message = "Generative model is not configured"


class PermissionDenied(ISMSError):
    status_code = 403
    public_message = "Insufficient permissions"
    expose = True


class PersistenceError(ISMSError):
    public_message = "Failed to save changes"


class NotFoundError(ISMSError):
    status_code = 404
    public_message = "Not found"
    expose = True


class ConflictError(ISMSError):
    status_code = 409
    public_message = "Conflict"
    expose = True
