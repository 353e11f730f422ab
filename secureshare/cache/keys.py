"""Cache key namespaces.

Secret metadata and content live under distinct keys so they can be evicted
and expire independently.
"""

USER = "user:"
SECRET = "secret:"
SESSION = "session:"
RATE_LIMIT = "rate_limit:"
EMAIL_VERIFICATION = "email_verify:"
PASSWORD_RESET = "password_reset:"
ACCESS_LOG = "access_log:"


def secret_metadata(secret_id: str) -> str:
    return f"{SECRET}meta:{secret_id}"


def secret_content(secret_id: str) -> str:
    return f"{SECRET}content:{secret_id}"


def user_secret_list(user_id: str) -> str:
    return f"{USER}profile:secrets:{user_id}"


def rate_limit(policy: str, identifier: str) -> str:
    return f"{RATE_LIMIT}{policy}:{identifier}"


def access_log(secret_id: str, timestamp_ms: int) -> str:
    return f"{ACCESS_LOG}{secret_id}:{timestamp_ms}"
