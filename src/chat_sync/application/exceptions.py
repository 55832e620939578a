from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class ValidationError(AppError):
    pass


class TransportError(AppError):
    pass


class MalformedFrameError(AppError):
    pass


class ApiError(AppError):
    def __init__(self, detail: str = "", status: int | None = None) -> None:
        self.status = status
        super().__init__(detail)
