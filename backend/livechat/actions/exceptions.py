"""
Engine error taxonomy.

Each error is an HTTPException so routers can let them propagate as-is.
ConflictError is reserved for lost races (a concurrent writer got there first);
it is distinct from BadRequestError so callers know a refresh/retry is reasonable.
"""
from fastapi import HTTPException, status


class ActionError(HTTPException):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(status_code=self.status_code, detail=detail)


class NotFoundError(ActionError):
    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenError(ActionError):
    status_code = status.HTTP_403_FORBIDDEN


class BadRequestError(ActionError):
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(ActionError):
    status_code = status.HTTP_409_CONFLICT


class GoneError(ActionError):
    status_code = status.HTTP_410_GONE
