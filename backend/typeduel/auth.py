from flask_login import current_user

from typeduel.errors import Unauthenticated


def current_user_id():
    """Return the logged-in user's id, or None for anonymous callers."""
    if current_user and current_user.is_authenticated:
        return current_user.id
    return None


def require_user_id():
    user_id = current_user_id()
    if user_id is None:
        raise Unauthenticated()
    return user_id
