# ABOUTME: FastAPI app: wires auth, goal/milestone/task and agent-session routers; GET /healthz.
# ABOUTME: Every error leaves as {"error": {code, message, details?}}; unexpected failures are logged and become 500.

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.goals import router as goals_router
from api.sessions import router as sessions_router
from api.users import auth_router, me_router
from core.config import CORS_ORIGINS, LOG_LEVEL
from core.errors import ApiError

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _error_response(status_code: int, message: str, details=None, headers=None) -> JSONResponse:
    error = {"code": status_code, "message": message}
    if details is not None:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error}, headers=headers)


app = FastAPI(title="Goal Planner API")
app.include_router(auth_router)
app.include_router(me_router)
app.include_router(goals_router)
app.include_router(sessions_router)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ApiError)
def handle_api_error(_request: Request, exc: ApiError):
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    if exc.status_code >= 500:
        logging.error("API error %s: %s", exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=headers)


@app.exception_handler(RequestValidationError)
def handle_validation_error(_request: Request, exc: RequestValidationError):
    """Malformed or missing input is a 400 in the same envelope as domain errors."""
    details = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    first = details[0] if details else {"field": "", "message": "Invalid request."}
    message = f"{first['field']}: {first['message']}" if first["field"] else first["message"]
    return _error_response(400, message, details)


@app.exception_handler(StarletteHTTPException)
def handle_http_exception(_request: Request, exc: StarletteHTTPException):
    return _error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
def handle_unexpected_error(_request: Request, _exc: Exception):
    logging.exception("Unhandled error while processing request")
    return _error_response(500, "Internal server error.")


@app.get("/healthz")
def get_healthz():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
