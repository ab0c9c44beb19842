"""
Identity Provider Module

Resolves the calling account for every vault operation. The vault never
accepts an "on behalf of" account: whatever identity the provider returns
is the account that is credited or debited.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone, timedelta
from typing import Optional

import jwt


class IdentityError(Exception):
    """Caller identity could not be established"""
    pass


class IdentityProvider(ABC):
    """Supplies the calling account's identity"""

    @abstractmethod
    def identify(self, token: Optional[str] = None, account_header: Optional[str] = None) -> str:
        """Return the caller's account identity or raise IdentityError"""
        pass


class JWTIdentityProvider(IdentityProvider):
    """Bearer-token identity: the `sub` claim is the account"""

    def __init__(self, secret: str, algorithm: str = "HS256"):
        self.secret = secret
        self.algorithm = algorithm

    def identify(self, token: Optional[str] = None, account_header: Optional[str] = None) -> str:
        if not token:
            raise IdentityError("Not authenticated")
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise IdentityError("Token expired")
        except jwt.InvalidTokenError:
            raise IdentityError("Invalid token")

        account = payload.get("sub")
        if not account:
            raise IdentityError("Invalid token")
        return account

    def issue_token(self, account: str, expires_in: timedelta = timedelta(hours=24)) -> str:
        """Issue a token for an account (used by tooling and tests)"""
        now = datetime.now(timezone.utc)
        payload = {"sub": account, "iat": now, "exp": now + expires_in}
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)


class HeaderIdentityProvider(IdentityProvider):
    """Trusts the X-Account-Id header; only for development with auth disabled"""

    def identify(self, token: Optional[str] = None, account_header: Optional[str] = None) -> str:
        if not account_header:
            raise IdentityError("X-Account-Id header required")
        return account_header
