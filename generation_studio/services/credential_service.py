"""
Credential verification and bearer token issuance.

Passwords are hashed with bcrypt.  Hashing and verification are
deliberately slow, CPU-bound operations, so both run on a worker thread
via ``asyncio.to_thread`` and never block the event loop.

Bearer tokens are HS256-signed JWTs produced with PyJWT.  The user
identifier travels in the registered ``sub`` claim; ``iat`` and ``exp``
bound the token's lifetime.  The signing secret and lifetime are passed in
by the composition root, never read from the environment here.
"""

import asyncio
import datetime

import bcrypt
import jwt
import structlog

import generation_studio.exceptions

logger = structlog.get_logger()

TOKEN_SIGNING_ALGORITHM = "HS256"


class CredentialService:
    """
    Issues and validates bearer tokens and hashes and checks passwords.

    Instances are immutable after construction and safe for concurrent use.
    """

    def __init__(self, signing_secret: str, token_lifetime_seconds: int = 86_400) -> None:
        """
        Args:
            signing_secret: HMAC secret shared by issuance and verification.
            token_lifetime_seconds: Seconds between a token's ``iat`` and
                ``exp`` claims.
        """
        self._signing_secret = signing_secret
        self._token_lifetime = datetime.timedelta(seconds=token_lifetime_seconds)

    # ── Passwords ──────────────────────────────────────────────────────

    async def hash_password(self, password: str) -> str:
        password_hash = await asyncio.to_thread(
            bcrypt.hashpw,
            password.encode("utf-8"),
            bcrypt.gensalt(),
        )
        return password_hash.decode("utf-8")

    async def verify_password(self, password: str, password_hash: str) -> bool:
        try:
            return await asyncio.to_thread(
                bcrypt.checkpw,
                password.encode("utf-8"),
                password_hash.encode("utf-8"),
            )
        except ValueError:
            # A corrupt stored hash is treated as a mismatch.
            logger.warning("password_hash_unreadable")
            return False

    # ── Tokens ─────────────────────────────────────────────────────────

    def issue_token(self, user_identifier: str) -> str:
        """Sign a token whose ``sub`` claim is the user identifier."""
        issued_at = datetime.datetime.now(datetime.timezone.utc)
        claims = {
            "sub": user_identifier,
            "iat": issued_at,
            "exp": issued_at + self._token_lifetime,
        }
        return jwt.encode(claims, self._signing_secret, algorithm=TOKEN_SIGNING_ALGORITHM)

    def resolve_token(self, token: str) -> str:
        """
        Verify a bearer token and return the user identifier it carries.

        Raises:
            UnauthorizedError: When the token is malformed, expired, signed
                with another secret or lacks a usable ``sub`` claim.
        """
        try:
            claims = jwt.decode(
                token,
                self._signing_secret,
                algorithms=[TOKEN_SIGNING_ALGORITHM],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError as expired_error:
            logger.info("bearer_token_expired")
            raise generation_studio.exceptions.UnauthorizedError(
                detail="The bearer token has expired.",
            ) from expired_error
        except jwt.PyJWTError as token_error:
            logger.info("bearer_token_rejected", error_type=type(token_error).__name__)
            raise generation_studio.exceptions.UnauthorizedError(
                detail="The bearer token is invalid.",
            ) from token_error

        user_identifier = claims.get("sub")
        if not isinstance(user_identifier, str) or not user_identifier:
            raise generation_studio.exceptions.UnauthorizedError(
                detail="The bearer token does not identify a user.",
            )
        return user_identifier
