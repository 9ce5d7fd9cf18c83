# SPDX-License-Identifier: Apache-2.0

"""
Authentication service for JWT token management.

Tokens carry identity only (subject and email). Roles and permissions are
resolved per request by the permission resolver so a role change takes
effect without reissuing tokens. HS256 is used when a shared secret is
configured (e.g. the identity provider's JWT secret); otherwise RS256 with
configured or generated development keys.
"""

import os
import uuid
import jwt
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Tuple
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from opentelemetry import trace
import logging

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass


class TokenValidationError(Exception):
    """Raised when token validation fails."""
    pass


def generate_dev_key_pair() -> Tuple[str, str]:
    """Generate an RSA key pair (PEM private, PEM public) for development use."""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048
    )

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    ).decode('utf-8')

    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode('utf-8')

    return private_pem, public_pem


class AuthService:
    """
    JWT authentication service.

    Args:
        secret: Shared HS256 secret; takes precedence over key pairs
        private_key: RS256 private key for token signing (PEM format)
        public_key: RS256 public key for token verification (PEM format)
        access_token_expire_minutes: Lifetime of issued access tokens
    """

    def __init__(self, secret: Optional[str] = None, private_key: Optional[str] = None,
                 public_key: Optional[str] = None, access_token_expire_minutes: int = 60):
        self.access_token_expire_minutes = access_token_expire_minutes
        secret = secret or os.getenv("JWT_SECRET")

        if secret:
            self.algorithm = "HS256"
            self.signing_key = secret
            self.verification_key = secret
            return

        self.algorithm = "RS256"
        private_key = private_key or os.getenv("JWT_PRIVATE_KEY")
        public_key = public_key or os.getenv("JWT_PUBLIC_KEY")
        if not private_key or not public_key:
            logger.warning("No JWT keys configured, generating development key pair")
            private_key, public_key = generate_dev_key_pair()

        self.signing_key = private_key
        self.verification_key = public_key

    def issue_token(self, user_id: str, email: str) -> Dict[str, Any]:
        """
        Issue an access token for an identity.

        Args:
            user_id: Subject of the token
            email: Identity used for permission resolution

        Returns:
            Dictionary containing access_token and metadata
        """
        with tracer.start_as_current_span("auth.issue_token") as span:
            span.set_attributes({
                "auth.operation": "issue_token",
                "user.id": user_id
            })

            now = datetime.now(timezone.utc)
            expires_at = now + timedelta(minutes=self.access_token_expire_minutes)
            payload = {
                "sub": user_id,
                "email": email.strip().lower(),
                "jti": uuid.uuid4().hex,
                "iat": now,
                "exp": expires_at,
                "type": "access"
            }

            try:
                token = jwt.encode(payload, self.signing_key, algorithm=self.algorithm)
            except Exception as e:
                logger.error(f"Token generation failed: {str(e)}")
                raise AuthenticationError(f"Failed to generate token: {str(e)}")

            logger.info(
                "JWT token issued",
                extra={"user_id": user_id, "expires_at": expires_at.isoformat()}
            )

            return {
                "access_token": token,
                "token_type": "Bearer",
                "expires_in": self.access_token_expire_minutes * 60,
                "expires_at": expires_at.isoformat()
            }

    def validate_token(self, token: str) -> Dict[str, Any]:
        """
        Validate and decode a JWT token.

        Args:
            token: JWT token string to validate

        Returns:
            Decoded token payload

        Raises:
            TokenValidationError: If token is invalid, expired or lacks an email
        """
        with tracer.start_as_current_span("auth.validate_token") as span:
            span.set_attribute("auth.operation", "validate_token")

            try:
                payload = jwt.decode(
                    token,
                    self.verification_key,
                    algorithms=[self.algorithm],
                    options={"verify_exp": True, "verify_aud": False}
                )
            except jwt.ExpiredSignatureError:
                span.set_attribute("auth.validation_result", "expired")
                logger.warning("Token validation failed: token expired")
                raise TokenValidationError("Token has expired")
            except jwt.InvalidTokenError as e:
                span.set_attribute("auth.validation_result", "invalid")
                logger.warning(f"Token validation failed: {str(e)}")
                raise TokenValidationError(f"Invalid token: {str(e)}")

            if payload.get("type", "access") != "access":
                raise TokenValidationError("Invalid token type. Expected access")
            if not payload.get("email"):
                raise TokenValidationError("Token has no email claim")

            span.set_attributes({
                "auth.validation_result": "success",
                "user.id": payload.get("sub") or ""
            })
            return payload

    def self_test(self) -> bool:
        """Sign and verify a throwaway token; used by the health check."""
        token = self.issue_token("health-check", "health@check.local")["access_token"]
        return self.validate_token(token).get("sub") == "health-check"


def create_auth_service() -> AuthService:
    """Factory function to create the authentication service from environment."""
    expire = int(os.getenv("JWT_ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
    return AuthService(access_token_expire_minutes=expire)
