"""HTTP error types for the lobby inspection API."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class APIError(Exception):
    def __init__(self, code: str, message: str, status: int = 400, details: dict | None = None):
        self.code = code
        self.message = message
        self.status = status
        self.details = details or {}
        super().__init__(message)


class NotFoundError(APIError):
    def __init__(self, code: str = "NOT_FOUND", message: str = "Resource not found", details: dict | None = None):
        super().__init__(code, message, 404, details)


class LobbyNotFoundError(NotFoundError):
    def __init__(self, cid: str):
        super().__init__("LOBBY_NOT_FOUND", f"Lobby '{cid}' not found", {"cid": cid})


def _error_response(status: int, code: str, message: str, details: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={"error": {"code": code, "message": message, "details": details or {}}},
    )


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        return _error_response(exc.status, exc.code, exc.message, exc.details)

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        message = str(exc) if app.debug else "Internal server error"
        return _error_response(500, "INTERNAL_ERROR", message)
