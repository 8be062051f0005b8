"""Identity Resolver.

Turns a bearer credential into a verified ``Actor``. Signature and expiry
checks are delegated to a token verifier; the resolver only extracts and
validates claims. Credentials are never logged.
"""

import asyncio
from typing import Any, Dict, List, Optional, Protocol, Union

from jose import ExpiredSignatureError, JWTError, jwt

from medgate.auth.roles import Actor, parse_category, parse_role
from medgate.core.exceptions import AuthenticationError
from medgate.utils.logging import get_logger

logger = get_logger(__name__)

BEARER_PREFIX = "bearer "


class TokenVerifier(Protocol):
    """External identity-provider capability."""

    def verify(self, token: str) -> Dict[str, Any]:
        """Return verified claims or raise ``JWTError``."""
        ...


class JoseTokenVerifier:
    """Verifies JWTs with python-jose.

    ``key`` may be a shared secret, a PEM public key, or a JWKS dict as
    published by the identity provider.
    """

    def __init__(
        self,
        key: Union[str, Dict[str, Any]],
        algorithms: List[str],
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
    ) -> None:
        self.key = key
        self.algorithms = algorithms
        self.issuer = issuer
        self.audience = audience

    def verify(self, token: str) -> Dict[str, Any]:
        claims: Dict[str, Any] = jwt.decode(
            token,
            self.key,
            algorithms=self.algorithms,
            audience=self.audience,
            issuer=self.issuer,
            options={
                "verify_aud": self.audience is not None,
                "require_exp": True,
                "require_sub": True,
            },
        )
        return claims


class IdentityResolver:
    """Resolves bearer credentials into actors."""

    def __init__(
        self,
        verifier: TokenVerifier,
        role_claim: str = "custom:role",
        category_claim: str = "custom:userType",
        timeout_seconds: float = 3.0,
    ) -> None:
        self.verifier = verifier
        self.role_claim = role_claim
        self.category_claim = category_claim
        self.timeout_seconds = timeout_seconds

    async def resolve(self, credential: Optional[str]) -> Actor:
        """Verify ``credential`` and build the actor it identifies.

        Raises:
            AuthenticationError: absent, malformed, expired or incomplete credential
        """
        token = self._extract_token(credential)

        try:
            claims = await asyncio.wait_for(
                asyncio.to_thread(self.verifier.verify, token),
                timeout=self.timeout_seconds,
            )
        except ExpiredSignatureError as e:
            raise AuthenticationError("Token has expired") from e
        except JWTError as e:
            raise AuthenticationError("Invalid token") from e
        except asyncio.TimeoutError as e:
            logger.error("identity_verification_timeout", timeout=self.timeout_seconds)
            raise AuthenticationError("Identity verification timed out") from e

        return self._actor_from_claims(claims)

    def _extract_token(self, credential: Optional[str]) -> str:
        if not credential or not isinstance(credential, str):
            raise AuthenticationError("No authentication token provided")
        token = credential.strip()
        if token.lower().startswith(BEARER_PREFIX):
            token = token[len(BEARER_PREFIX):].strip()
        # compact JWS: header.payload.signature
        if not token or token.count(".") != 2:
            raise AuthenticationError("Malformed token")
        return token

    def _actor_from_claims(self, claims: Dict[str, Any]) -> Actor:
        subject = claims.get("sub")
        role = parse_role(claims.get(self.role_claim))
        category = parse_category(claims.get(self.category_claim))

        missing = [
            name
            for name, value in (
                ("sub", subject),
                (self.role_claim, role),
                (self.category_claim, category),
            )
            if not value
        ]
        if missing:
            logger.warning("identity_claims_missing", claims=missing)
            raise AuthenticationError(f"Missing required claims: {', '.join(missing)}")

        try:
            return Actor(
                id=str(subject),
                role=role,
                category=category,
                email=str(claims.get("email") or ""),
                claims=claims,
            )
        except ValueError as e:
            logger.warning(
                "identity_claims_inconsistent",
                role=role.value if role else None,
                category=category.value if category else None,
            )
            raise AuthenticationError("Inconsistent role claims") from e


__all__ = ["TokenVerifier", "JoseTokenVerifier", "IdentityResolver"]
