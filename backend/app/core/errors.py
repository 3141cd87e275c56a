from fastapi import HTTPException


class ServiceRequestError(HTTPException):
    """Base for failures raised by the service-request core.

    Subclasses carry the HTTP status the transport layer answers with and a
    stable ``kind`` callers can branch on without parsing the message.
    """

    http_status = 500
    kind = "INTERNAL"

    def __init__(self, detail: str) -> None:
        super().__init__(status_code=self.http_status, detail=detail)

    def __str__(self) -> str:
        return f"{self.kind}: {self.detail}"


class BadRequestError(ServiceRequestError):
    http_status = 400
    kind = "BAD_REQUEST"


class ForbiddenError(ServiceRequestError):
    http_status = 403
    kind = "FORBIDDEN"


class NotFoundError(ServiceRequestError):
    http_status = 404
    kind = "NOT_FOUND"

    @classmethod
    def for_entity(cls, entity: str) -> "NotFoundError":
        return cls(f"{entity} not found")


class ConflictError(ServiceRequestError):
    http_status = 409
    kind = "CONFLICT"
