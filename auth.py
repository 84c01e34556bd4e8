"""Bearer token verification and product-token re-minting."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, EmailStr, ValidationError as PydanticValidationError

from errors import AuthError

logger = logging.getLogger(__name__)

PRODUCT_TOKEN_PERMISSIONS = ["read:products"]

bearer_scheme = HTTPBearer(auto_error=False)


class TokenClaims(BaseModel):
    """Identity claims carried by a signed credential."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[Union[str, int]] = None
    sub: Optional[str] = None
    email: Optional[EmailStr] = None
    role: str = "user"
    permissions: List[str] = []


@dataclass(frozen=True)
class Identity:
    id: Optional[str]
    email: Optional[str]
    role: str = "user"
    permissions: Tuple[str, ...] = ()


class TokenVerifier:
    """Validates HMAC-signed JWTs and issues narrower product tokens."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        product_token_ttl: int = 3600,
        clock: Callable[[], float] = time.time,
    ):
        self._secret = secret
        self._algorithm = algorithm
        self._product_token_ttl = product_token_ttl
        self._clock = clock

    def verify(self, token: str) -> Identity:
        """
        Decode ``token`` and return the identity it carries.

        Raises:
            AuthError: If the token is expired, badly signed, malformed, or
                its claims do not validate.
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthError("Token has expired.")
        except jwt.InvalidTokenError as e:
            logger.debug(f"Rejected token: {e}")
            raise AuthError("Invalid token.")

        try:
            claims = TokenClaims.model_validate(payload)
        except PydanticValidationError as e:
            logger.debug(f"Rejected token claims: {e}")
            raise AuthError("Invalid token.")

        user_id = claims.id if claims.id is not None else claims.sub
        return Identity(
            id=str(user_id) if user_id is not None else None,
            email=claims.email,
            role=claims.role,
            permissions=tuple(claims.permissions),
        )

    def mint_product_token(self, identity: Identity) -> Tuple[str, int]:
        """Issue a short-lived token limited to reading products.

        Returns:
            The encoded token and its lifetime in seconds.
        """
        issued_at = int(self._clock())
        payload = {
            "id": identity.id,
            "email": identity.email,
            "role": identity.role or "user",
            "permissions": list(PRODUCT_TOKEN_PERMISSIONS),
            "iat": issued_at,
            "exp": issued_at + self._product_token_ttl,
        }
        token = jwt.encode(payload, self._secret, algorithm=self._algorithm)
        return token, self._product_token_ttl


def get_verifier(request: Request) -> TokenVerifier:
    return request.app.state.verifier


def require_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    verifier: TokenVerifier = Depends(get_verifier),
) -> Identity:
    """Route dependency: the caller's identity, or 401."""
    if credentials is None or not credentials.credentials:
        raise AuthError("Access denied. No token provided.")
    return verifier.verify(credentials.credentials)
