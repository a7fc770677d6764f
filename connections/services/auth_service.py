"""
Authentication Service

Identity for the game server: guest account creation and JWT token
management. Accounts live in the users collection next to their game data.
"""

import jwt
import datetime
import uuid
from typing import Optional, Dict, Any

from .persistence_service import PersistenceService
from .store import PersistenceError


class AuthService:
    """
    Authentication service for guest accounts and token verification.
    """

    def __init__(self, persistence: PersistenceService, jwt_secret: str, expiration_days: int = 7):
        """
        Initialize the authentication service.

        Args:
            persistence: Persistence service owning the account documents
            jwt_secret: Secret key for JWT token generation
            expiration_days: Token lifetime in days
        """
        self.persistence = persistence
        self.jwt_secret = jwt_secret
        self.expiration_days = expiration_days

    def issue_token(self, user_id: str, username: str) -> str:
        """
        Generate a signed JWT for an account.

        Args:
            user_id: Account identifier
            username: Display name carried in the token

        Returns:
            Encoded JWT string
        """
        now = datetime.datetime.now(datetime.timezone.utc)
        token_payload = {
            "user_id": user_id,
            "username": username,
            "iat": now,
            "exp": now + datetime.timedelta(days=self.expiration_days)
        }
        return jwt.encode(token_payload, self.jwt_secret, algorithm="HS256")

    def create_guest(self, username: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a guest account and sign a token for it.

        Args:
            username: Optional display name; generated when omitted

        Returns:
            Dictionary with success status, token and user data or error
        """
        user_id = uuid.uuid4().hex
        username = (username or "").strip() or f"Guest-{user_id[:6]}"
        if len(username) > 32:
            return {"success": False, "error": "Username must be at most 32 characters long"}

        try:
            self.persistence.create_account(user_id, username, is_guest=True)
        except PersistenceError as e:
            return {"success": False, "error": f"Guest creation failed: {str(e)}"}

        return {
            "success": True,
            "token": self.issue_token(user_id, username),
            "user": {
                "id": user_id,
                "username": username,
                "is_guest": True
            }
        }

    def verify_token(self, token: str) -> Dict[str, Any]:
        """
        Verify and decode a JWT token and check that its account exists.

        Args:
            token: JWT token string

        Returns:
            Dictionary with success status and user data or error
        """
        try:
            if not token:
                return {"success": False, "error": "Token is required"}

            payload = jwt.decode(token, self.jwt_secret, algorithms=["HS256"])
            user_id = payload.get("user_id")

            if not user_id:
                return {"success": False, "error": "Invalid token payload"}

            user = self.get_user_by_id(user_id)
            if not user:
                return {"success": False, "error": "User not found"}

            return {"success": True, "user": user}

        except jwt.ExpiredSignatureError:
            return {"success": False, "error": "Token has expired"}
        except jwt.InvalidTokenError:
            return {"success": False, "error": "Invalid token"}
        except PersistenceError as e:
            return {"success": False, "error": f"Token verification failed: {str(e)}"}

    def get_user_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Get user data by user ID.

        Args:
            user_id: User's unique identifier

        Returns:
            User data dictionary or None if not found

        Raises:
            PersistenceError: If the account store is unreachable
        """
        account = self.persistence.read_account(user_id)
        if account is None:
            return None
        return {
            "id": account.user_id,
            "username": account.username,
            "is_guest": account.is_guest,
            "achievements": account.achievements_summary()
        }


# Global service instance
_auth_service = None


def get_auth_service() -> Optional[AuthService]:
    """Get the global auth service instance."""
    return _auth_service


def initialize_auth_service(persistence: PersistenceService, jwt_secret: str,
                            expiration_days: int = 7) -> AuthService:
    """Initialize the global auth service instance."""
    global _auth_service
    _auth_service = AuthService(persistence, jwt_secret, expiration_days)
    return _auth_service
