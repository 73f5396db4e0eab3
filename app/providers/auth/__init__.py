"""
Auth Providers - authentication abstraction.

    auth/
    ├── interface.py       # AuthProviderInterface + AuthUser / DecodedToken
    ├── firebase_impl.py   # Identity Toolkit REST (client) + firebase_admin (server)
    └── supabase_impl.py   # supabase-py auth
"""

from .interface import AuthProviderInterface, AuthUser, DecodedToken, UserProfileUpdate

__all__ = ["AuthProviderInterface", "AuthUser", "DecodedToken", "UserProfileUpdate"]
