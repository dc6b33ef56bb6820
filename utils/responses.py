from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from core.config import settings

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


def envelope(data: Any, message: str, status_code: int = 200) -> dict:
    return {"status": status_code, "data": data, "message": message}


def no_store_json(data: Any, message: str = "Success", status_code: int = 200, headers: Optional[dict] = None) -> JSONResponse:
    """Return a {status, data, message} JSONResponse with no-store caching headers."""
    all_headers = dict(NO_STORE_HEADERS)
    if headers:
        all_headers.update(headers)
    return JSONResponse(
        content=jsonable_encoder(envelope(data, message, status_code)),
        status_code=status_code,
        headers=all_headers,
    )


def set_auth_cookies(response: JSONResponse, access_token: str, refresh_token: str) -> JSONResponse:
    for name, value in ((ACCESS_COOKIE, access_token), (REFRESH_COOKIE, refresh_token)):
        response.set_cookie(
            name,
            value,
            httponly=True,
            secure=settings.COOKIE_SECURE,
            samesite=settings.COOKIE_SAMESITE,
        )
    return response


def clear_auth_cookies(response: JSONResponse) -> JSONResponse:
    # Empty value with immediate expiry
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(
            name,
            httponly=True,
            secure=settings.COOKIE_SECURE,
            samesite=settings.COOKIE_SAMESITE,
        )
    return response
