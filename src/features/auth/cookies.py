"""Refresh and device token cookies."""

from fastapi import Response

from src.config.settings import settings

from .tokens import IssuedToken

REFRESH_COOKIE = "refreshToken"
DEVICE_COOKIE = "deviceToken"


def _set_cookie(response: Response, name: str, issued: IssuedToken) -> None:
    response.set_cookie(
        key=name,
        value=issued.token,
        max_age=issued.max_age,
        path="/",
        domain=settings.cookie_domain,
        secure=settings.secure_cookies,
        httponly=True,
        samesite=settings.cookie_samesite,
    )


def set_session_cookies(response: Response, refresh: IssuedToken, device: IssuedToken | None = None) -> None:
    """Attach the refresh cookie, and the device cookie when one was issued."""
    _set_cookie(response, REFRESH_COOKIE, refresh)
    if device is not None:
        _set_cookie(response, DEVICE_COOKIE, device)


def clear_session_cookies(response: Response) -> None:
    for name in (REFRESH_COOKIE, DEVICE_COOKIE):
        response.delete_cookie(
            key=name,
            path="/",
            domain=settings.cookie_domain,
            secure=settings.secure_cookies,
            httponly=True,
            samesite=settings.cookie_samesite,
        )
