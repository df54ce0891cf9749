from typing import Dict, Optional


class ConfigurationError(RuntimeError):
    """Raised while building the app when required settings are missing."""


class StoreError(Exception):
    status_code = 500
    retryable = False
    default_message = "Something went wrong. Please try again later."

    def __init__(self, message: str = "", *, status_code: Optional[int] = None, retryable: Optional[bool] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        if retryable is not None:
            self.retryable = retryable

    def to_dict(self) -> Dict[str, object]:
        return {"message": self.message, "retryable": self.retryable}


class ValidationError(StoreError):
    status_code = 400
    default_message = "The request could not be processed."


class NotFoundError(StoreError):
    status_code = 404
    default_message = "Not found."


class AuthenticationError(StoreError):
    status_code = 401
    default_message = "Authentication required."


class PermissionDeniedError(StoreError):
    status_code = 403
    default_message = "Admin access required."


class WebhookSignatureError(StoreError):
    status_code = 400
    default_message = "Webhook signature verification failed."


class ServiceUnavailableError(StoreError):
    status_code = 503
    default_message = "This feature is not configured on the server."


class UpstreamError(StoreError):
    """A database or third-party call failed.

    Network errors and timeouts are retryable by the client; anything the
    upstream rejected outright is not.
    """

    status_code = 502
    default_message = "An upstream service failed. Please try again later."
