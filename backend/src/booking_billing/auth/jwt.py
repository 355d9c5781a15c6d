"""JWT verification for access tokens issued by the booking platform.

Tokens are RS256 signed. In production the platform's public key is
configured through JWT_PUBLIC_KEY; in development an ephemeral key pair is
generated so tokens can be minted locally.
"""
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional
from uuid import UUID

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from booking_billing.auth.rbac import AuthContext
from booking_billing.config import settings


class JWTAuth:
    """JWT verification (and, with a private key, issuing) with RS256 signing."""

    def __init__(self, public_key_pem: str | None = None):
        """Load the verification key, or generate an ephemeral key pair."""
        self.algorithm = settings.jwt_algorithm
        self.access_token_expire_minutes = 60
        self._private_key: rsa.RSAPrivateKey | None = None

        public_key_pem = public_key_pem or settings.jwt_public_key
        if public_key_pem:
            self._public_key = serialization.load_pem_public_key(public_key_pem.encode())
        else:
            self._private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
            self._public_key = self._private_key.public_key()

    def create_access_token(
        self,
        user_id: str,
        role: str,
        business_ids: Iterable[UUID] = (),
        additional_claims: Optional[Dict] = None,
    ) -> str:
        """
        Create JWT access token (development and tests only).

        Args:
            user_id: User identifier
            role: Caller role
            business_ids: Businesses owned by the caller
            additional_claims: Additional JWT claims

        Returns:
            Encoded JWT token

        Raises:
            RuntimeError: If only a public key is configured
        """
        if self._private_key is None:
            raise RuntimeError("Token issuing requires a private key")

        now = datetime.utcnow()
        claims = {
            "sub": str(user_id),
            "role": role,
            "business_ids": [str(b) for b in business_ids],
            "iat": now,
            "exp": now + timedelta(minutes=self.access_token_expire_minutes),
            "type": "access",
        }
        if additional_claims:
            claims.update(additional_claims)

        private_pem = self._private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return jwt.encode(claims, private_pem, algorithm=self.algorithm)

    def verify_access_token(self, token: str) -> Dict:
        """
        Verify and decode an access token.

        Raises:
            jwt.ExpiredSignatureError: If token is expired
            jwt.InvalidTokenError: If token is invalid or not an access token
        """
        public_pem = self._public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        options = {"verify_signature": True, "verify_aud": settings.jwt_audience is not None}
        payload = jwt.decode(
            token,
            public_pem,
            algorithms=[self.algorithm],
            audience=settings.jwt_audience,
            options=options,
        )

        if payload.get("type") != "access":
            raise jwt.InvalidTokenError("Not an access token")

        return payload

    def to_auth_context(self, payload: Dict) -> AuthContext:
        """
        Build the authorization context from verified claims.

        Raises:
            jwt.InvalidTokenError: If claims are missing or malformed
        """
        if "sub" not in payload or "role" not in payload:
            raise jwt.InvalidTokenError("Token is missing subject or role")
        try:
            business_ids = frozenset(UUID(b) for b in payload.get("business_ids", []))
        except ValueError as e:
            raise jwt.InvalidTokenError(f"Malformed business_ids claim: {e}") from e
        return AuthContext(user_id=payload["sub"], role=payload["role"], business_ids=business_ids)


jwt_auth = JWTAuth()
