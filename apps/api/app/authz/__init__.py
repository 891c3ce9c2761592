from app.authz.models import Permission, Role, role_permission

__all__ = [
    "Permission",
    "Role",
    "role_permission",
]
