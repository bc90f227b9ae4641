"""
Bearer-token authentication backed by Firebase Authentication.
"""

from pathlib import Path
from typing import Optional, Union

import firebase_admin
import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials

from api.models import VerifiedIdentity

logger = structlog.get_logger(__name__)

BEARER_PREFIX = "Bearer "

NO_TOKEN_MESSAGE = "Unauthorized: No token provided"
INVALID_TOKEN_MESSAGE = "Unauthorized: Invalid token"


class TokenVerificationError(Exception):
    """Raised when the identity provider rejects a token or cannot be reached."""


class FirebaseTokenVerifier:
    """Verifies Firebase ID tokens with the Admin SDK."""

    def __init__(self, app: firebase_admin.App, check_revoked: bool = False):
        self.app = app
        self.check_revoked = check_revoked

    @classmethod
    def from_service_account(
        cls,
        credentials_path: Union[str, Path],
        check_revoked: bool = False,
        app_name: str = "book-heaven"
    ) -> "FirebaseTokenVerifier":
        """
        Initialise a Firebase app from a service-account JSON file.

        Reuses the named app when it was already initialised in this process.
        """
        try:
            app = firebase_admin.get_app(app_name)
        except ValueError:
            cert = credentials.Certificate(str(credentials_path))
            app = firebase_admin.initialize_app(cert, name=app_name)
            logger.info("Firebase app initialized", app_name=app_name, project_id=app.project_id)
        return cls(app, check_revoked=check_revoked)

    async def verify(self, token: str) -> dict:
        """
        Verify an ID token and return its decoded claims.

        The Admin SDK call blocks on certificate fetches, so it runs in the
        thread pool.

        Raises:
            TokenVerificationError: If verification fails for any reason
        """
        try:
            return await run_in_threadpool(
                firebase_auth.verify_id_token,
                token,
                app=self.app,
                check_revoked=self.check_revoked,
            )
        except Exception as e:
            raise TokenVerificationError(str(e)) from e

    def close(self) -> None:
        firebase_admin.delete_app(self.app)


def extract_bearer_token(authorization: Optional[str]) -> str:
    """
    Pull the token out of an ``Authorization`` header value.

    Raises:
        HTTPException: 401 if the header is missing, lacks the ``Bearer ``
            prefix, or carries an empty token
    """
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=NO_TOKEN_MESSAGE,
            headers={"WWW-Authenticate": "Bearer"},
        )
    token = authorization[len(BEARER_PREFIX):].strip()
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=NO_TOKEN_MESSAGE,
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token


def get_token_verifier(request: Request):
    """Return the verifier created at startup."""
    verifier = getattr(request.app.state, "token_verifier", None)
    if verifier is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Identity provider not available"
        )
    return verifier


async def get_current_identity(
    request: Request,
    verifier=Depends(get_token_verifier)
) -> VerifiedIdentity:
    """
    Authenticate the request and return the caller's identity.

    Every call re-verifies the token; nothing is cached between requests.

    Raises:
        HTTPException: 401 if the token is missing or fails verification
    """
    token = extract_bearer_token(request.headers.get("Authorization"))

    try:
        claims = await verifier.verify(token)
        identity = VerifiedIdentity.from_claims(claims)
    except (TokenVerificationError, ValueError) as e:
        logger.warning("Token verification failed", path=request.url.path, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=INVALID_TOKEN_MESSAGE,
            headers={"WWW-Authenticate": "Bearer"},
        )

    logger.debug("Request authenticated", path=request.url.path, owner_email=identity.owner_email)
    return identity
