"""
Delegated identity.

Sessions live with the hosted identity provider (Supabase). This module only
turns the caller's access token into the user it belongs to; nothing is
stored server side.
"""
import logging
from typing import Optional

import requests
from flask import current_app, Request
from flask_login import LoginManager, UserMixin, current_user

logger = logging.getLogger(__name__)

login_manager = LoginManager()


class AuthUser(UserMixin):
    """The authenticated caller as reported by the identity provider."""

    def __init__(self, id: str, email: str = None, metadata: dict = None):
        self.id = id
        self.email = email
        self.metadata = metadata or {}

    def get_id(self):
        return self.id

    def __repr__(self):
        return f"<AuthUser {self.id}>"


class SupabaseIdentity:
    """Resolves access tokens against the Supabase auth endpoint."""

    def __init__(self, base_url: str, anon_key: str, timeout: float = 5):
        self.base_url = (base_url or '').rstrip('/')
        self.anon_key = anon_key
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.anon_key)

    def get_user(self, access_token: str) -> Optional[AuthUser]:
        if not access_token or not self.configured:
            return None

        try:
            resp = requests.get(
                f"{self.base_url}/auth/v1/user",
                headers={
                    'apikey': self.anon_key,
                    'Authorization': f"Bearer {access_token}"
                },
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"Identity provider unreachable: {e}")
            return None

        if resp.status_code != 200:
            return None

        data = resp.json()
        if not data.get('id'):
            return None

        return AuthUser(
            id=data['id'],
            email=data.get('email'),
            metadata=data.get('user_metadata') or {}
        )


def token_from_request(req: Request) -> Optional[str]:
    """Bearer header first, then the auth cookie."""
    header = req.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        return header[len('Bearer '):].strip() or None

    cookie_name = current_app.config.get('AUTH_COOKIE_NAME', 'sb-access-token')
    return req.cookies.get(cookie_name) or None


@login_manager.request_loader
def load_user_from_request(req: Request) -> Optional[AuthUser]:
    token = token_from_request(req)
    if not token:
        return None
    return current_app.identity.get_user(token)


def get_current_user() -> Optional[AuthUser]:
    if current_user and current_user.is_authenticated:
        return current_user._get_current_object()
    return None


def init_identity(app):
    app.identity = SupabaseIdentity(
        base_url=app.config.get('SUPABASE_URL'),
        anon_key=app.config.get('SUPABASE_ANON_KEY'),
        timeout=app.config.get('SUPABASE_TIMEOUT', 5)
    )
    login_manager.init_app(app)
