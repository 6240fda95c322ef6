"""JWT verification for Supabase access tokens"""

import logging

import jwt

logger = logging.getLogger(__name__)


class AuthService:
    """Validate bearer tokens issued by Supabase Auth"""

    def __init__(
        self, secret_key: str, algorithm: str = "HS256", audience: str | None = "authenticated"
    ):
        if not secret_key:
            raise ValueError("JWT secret key cannot be empty")

        self.secret_key = secret_key
        self.algorithm = algorithm
        self.audience = audience

    def verify_token(self, token: str) -> dict | None:
        """Verify a JWT token and return the payload if valid"""
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                options={"verify_aud": self.audience is not None},
            )
            user_id = payload.get("sub")

            if user_id is None:
                logger.warning("Token missing sub")
                return None

            return payload

        except jwt.ExpiredSignatureError:
            logger.warning("Token expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid token: {e}")
            return None
