from app.accounts.models import Organization, User

__all__ = [
    "Organization",
    "User",
]
