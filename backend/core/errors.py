from fastapi import HTTPException, status


class ServiceError(Exception):
    """Business rule violation; the message decides the HTTP status."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# Checked in order; first substring match wins.
_STATUS_BY_SUBSTRING = (
    ("already exists", status.HTTP_409_CONFLICT),
    ("not found", status.HTTP_404_NOT_FOUND),
    ("permission", status.HTTP_403_FORBIDDEN),
    ("insufficient", status.HTTP_400_BAD_REQUEST),
    ("already fulfilled", status.HTTP_400_BAD_REQUEST),
    ("already cancelled", status.HTTP_400_BAD_REQUEST),
    ("cannot", status.HTTP_400_BAD_REQUEST),
    ("only", status.HTTP_400_BAD_REQUEST),
    ("invalid", status.HTTP_400_BAD_REQUEST),
    ("required", status.HTTP_400_BAD_REQUEST),
    ("must", status.HTTP_400_BAD_REQUEST),
)


def status_for_message(message: str, default: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> int:
    lowered = (message or "").lower()
    for needle, code in _STATUS_BY_SUBSTRING:
        if needle in lowered:
            return code
    return default


def http_error(exc: Exception) -> HTTPException:
    message = getattr(exc, "message", None) or str(exc)
    return HTTPException(status_code=status_for_message(message), detail=message)
