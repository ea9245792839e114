# Security module
from app.security.actor import Actor
from app.security.auth import (
    create_access_token, decode_token, get_current_actor, require_admin
)

__all__ = [
    'Actor', 'create_access_token', 'decode_token',
    'get_current_actor', 'require_admin'
]
