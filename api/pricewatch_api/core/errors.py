from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException

from pricewatch.errors import NotFoundError, PricewatchError, ValidationError

STATUS_BY_ERROR: dict[type[PricewatchError], int] = {
    NotFoundError: 404,
    ValidationError: 400,
}


@dataclass
class ApiError:
    code: str
    message: str
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload

    @classmethod
    def from_domain(cls, exc: PricewatchError) -> "ApiError":
        return cls(code=exc.code, message=exc.message, details=exc.details)


class AppHTTPException(HTTPException):
    def __init__(self, status_code: int, error: ApiError):
        super().__init__(status_code=status_code, detail=error.to_dict())


def status_for(exc: PricewatchError) -> int:
    for error_type, status_code in STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            return status_code
    return 500
