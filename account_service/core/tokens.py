"""Issue and verify stateless JWT access/refresh tokens."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import jwt

from account_service.core.errors import TokenFailure, TokenVerificationError

if TYPE_CHECKING:
    from account_service.core.config import Settings

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
TOKEN_TYPES = frozenset({ACCESS_TOKEN_TYPE, REFRESH_TOKEN_TYPE})


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    token_type: str
    issued_at: datetime


class TokenService:
    """
    Signs tokens carrying only a subject (username), iat, exp and a token type.

    `clock` is injectable so expiry can be exercised without waiting; PyJWT's
    own exp/iat checks are disabled and expiry is compared against the clock
    after the signature has been verified.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=60),
        refresh_ttl: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if refresh_ttl <= access_ttl:
            raise ValueError("refresh_ttl must be longer than access_ttl")
        self._secret = secret
        self._algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: "Settings") -> "TokenService":
        return cls(
            secret=settings.JWT_SECRET.get_secret_value(),
            algorithm=settings.JWT_ALGORITHM,
            access_ttl=timedelta(minutes=settings.JWT_ACCESS_EXPIRE_MINUTES),
            refresh_ttl=timedelta(minutes=settings.JWT_REFRESH_EXPIRE_MINUTES),
        )

    def _issue(self, subject: str, token_type: str, ttl: timedelta) -> str:
        if not subject:
            raise ValueError("token subject must be non-empty")
        now = self._clock()
        # iat keeps sub-second precision so it orders against account timestamps.
        payload: dict[str, Any] = {
            "sub": subject,
            "type": token_type,
            "iat": now.timestamp(),
            "exp": int((now + ttl).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def issue_access_token(self, subject: str) -> str:
        return self._issue(subject, ACCESS_TOKEN_TYPE, self.access_ttl)

    def issue_refresh_token(self, subject: str) -> str:
        return self._issue(subject, REFRESH_TOKEN_TYPE, self.refresh_ttl)

    def _decode(self, token: str) -> dict[str, Any]:
        if not token or not token.strip():
            raise TokenVerificationError(TokenFailure.MALFORMED, "empty token")
        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "require": ["sub", "exp", "iat"],
                },
            )
        # InvalidSignatureError subclasses DecodeError, so it must come first.
        except jwt.InvalidSignatureError as e:
            raise TokenVerificationError(TokenFailure.BAD_SIGNATURE, str(e)) from e
        except jwt.InvalidAlgorithmError as e:
            raise TokenVerificationError(TokenFailure.UNSUPPORTED, str(e)) from e
        except jwt.DecodeError as e:
            raise TokenVerificationError(TokenFailure.MALFORMED, str(e)) from e
        except jwt.MissingRequiredClaimError as e:
            raise TokenVerificationError(TokenFailure.UNSUPPORTED, str(e)) from e
        except jwt.PyJWTError as e:
            raise TokenVerificationError(TokenFailure.UNSUPPORTED, str(e)) from e

    def verify(self, token: str, expected_type: str | None = ACCESS_TOKEN_TYPE) -> str:
        """
        Return the token subject, or raise TokenVerificationError with the reason.

        expected_type=None accepts either token type.
        """
        return self.verify_claims(token, expected_type).subject

    def verify_claims(
        self, token: str, expected_type: str | None = ACCESS_TOKEN_TYPE
    ) -> TokenClaims:
        """Like verify, but also return the token type and issue time."""
        try:
            payload = self._decode(token)
            subject = payload.get("sub")
            if not isinstance(subject, str) or not subject:
                raise TokenVerificationError(TokenFailure.UNSUPPORTED, "missing subject")
            token_type = payload.get("type")
            if token_type not in TOKEN_TYPES:
                raise TokenVerificationError(TokenFailure.UNSUPPORTED, "unknown token type")
            if expected_type is not None and token_type != expected_type:
                raise TokenVerificationError(
                    TokenFailure.UNSUPPORTED,
                    f"expected {expected_type} token, got {token_type}",
                )
            exp = payload.get("exp")
            if not isinstance(exp, (int, float)):
                raise TokenVerificationError(TokenFailure.MALFORMED, "exp is not numeric")
            iat = payload.get("iat")
            if isinstance(iat, bool) or not isinstance(iat, (int, float)):
                raise TokenVerificationError(TokenFailure.MALFORMED, "iat is not numeric")
            if self._clock().timestamp() >= exp:
                raise TokenVerificationError(TokenFailure.EXPIRED, "token has expired")
            return TokenClaims(
                subject=subject,
                token_type=token_type,
                issued_at=datetime.fromtimestamp(iat, UTC),
            )
        except TokenVerificationError as e:
            logger.warning("Token rejected: reason=%s detail=%s", e.reason.value, e.detail)
            raise

    def expires_in_seconds(self) -> int:
        return int(self.access_ttl.total_seconds())
