from __future__ import annotations


class BoardError(Exception):
    """Base class for errors raised by the service layer."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(BoardError):
    def __init__(self, messages: list[str]) -> None:
        super().__init__("; ".join(messages))
        self.messages = messages


class ConflictError(BoardError):
    status_code = 409


class PermissionDenied(BoardError):
    status_code = 403


class NotFound(BoardError):
    status_code = 404
