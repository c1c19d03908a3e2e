# backend/services/user_context.py
"""
Current-user resolution.

Authentication happens upstream (the identity provider / API gateway); it
forwards the verified user in the X-User-Id and X-User-Email headers. The
UserContext built from them is the only place handlers read "who is calling".
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Header


@dataclass(frozen=True)
class UserContext:
    user_id: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)


def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
) -> UserContext:
    user_id = (x_user_id or "").strip() or None
    email = (x_user_email or "").strip() or None
    return UserContext(user_id=user_id, email=email)
