"""
Identity resolution - bearer token to owner id
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional
import hmac
import structlog

from memchat.domain.errors import AuthenticationError

logger = structlog.get_logger(__name__)


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    """Pull the token out of an `Authorization: Bearer <token>` header"""

    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class IdentityService(ABC):
    """Resolves a request credential to a stable owner id"""

    @abstractmethod
    async def resolve(self, token: Optional[str]) -> str:
        """
        Resolve a bearer token

        Args:
            token: raw bearer token, without the scheme

        Returns:
            The owner id

        Raises:
            AuthenticationError: If the token is missing or unknown
        """


class StaticTokenIdentityService(IdentityService):
    """Maps configured bearer tokens to owner ids"""

    def __init__(self, tokens: Dict[str, str]):
        self.tokens = dict(tokens)

    async def resolve(self, token: Optional[str]) -> str:
        if not token:
            raise AuthenticationError("No token provided")

        for known, owner_id in self.tokens.items():
            if hmac.compare_digest(known.encode(), token.encode()):
                return owner_id

        logger.info("Rejected unknown token", token_prefix=token[:4])
        raise AuthenticationError("Invalid token")
