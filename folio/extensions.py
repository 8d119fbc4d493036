"""
Application-wide extensions, created here and bound in create_app().

The limiter keys signed-in creators by user id so that comment and
checkout limits follow the account rather than the network it posts from.
"""

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from folio.utils.auth import get_current_user_id


def rate_limit_key() -> str:
    user_id = get_current_user_id()
    if user_id:
        return f"user:{user_id}"
    return get_remote_address()


limiter = Limiter(key_func=rate_limit_key)
