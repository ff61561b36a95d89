"""Session token verification for the task API.

Tokens are issued by whatever handles sign-in; this module only verifies
them. A token is accepted from the session cookie or an
`Authorization: Bearer` header.
"""

import logging

from fastapi import Request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from pydantic import ValidationError

from src.core.config import constants, settings
from src.core.errors import AuthenticationRequiredError
from src.domain.user import AuthenticatedUser


logger = logging.getLogger(__name__)

serializer = URLSafeTimedSerializer(str(settings.secret_key), salt="task-session")


def issue_session_token(user: AuthenticatedUser) -> str:
    """Sign a session token for a user."""
    return serializer.dumps({"id": user.id, "email": user.email})


def verify_session_token(token: str) -> AuthenticatedUser:
    """Verify a session token and return its user.

    Raises:
        AuthenticationRequiredError: If the token is tampered, expired or malformed
    """
    try:
        session_data = serializer.loads(token, max_age=constants.SESSION_MAX_AGE_SECONDS)
        return AuthenticatedUser.model_validate(session_data)
    except SignatureExpired as err:
        msg = "Session expired"
        raise AuthenticationRequiredError(msg) from err
    except (BadSignature, ValidationError) as err:
        msg = "Invalid session"
        raise AuthenticationRequiredError(msg) from err


def _extract_token(request: Request) -> str | None:
    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return request.cookies.get(constants.SESSION_COOKIE_NAME)


async def require_user(request: Request) -> AuthenticatedUser:
    """FastAPI dependency resolving the authenticated caller.

    Raises:
        AuthenticationRequiredError: If no valid session accompanies the request
    """
    token = _extract_token(request)
    if not token:
        logger.warning("auth_missing_session", extra={"path": request.url.path})
        msg = "Authentication required"
        raise AuthenticationRequiredError(msg)

    try:
        return verify_session_token(token)
    except AuthenticationRequiredError:
        logger.warning("auth_invalid_session", extra={"path": request.url.path})
        raise
