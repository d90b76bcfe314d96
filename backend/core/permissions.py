from typing import Dict, FrozenSet

from fastapi import Depends, HTTPException, status

from core.auth import current_active_user
from db.users import User


ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    "admin": frozenset({"*"}),
    "manager": frozenset({
        "products.read", "products.write",
        "categories.read",
        "inventory.read", "inventory.write",
        "orders.read", "orders.write",
        "suppliers.read", "suppliers.write",
        "reports.read",
        "users.read",
    }),
    "operator": frozenset({
        "products.read",
        "categories.read",
        "inventory.read", "inventory.write",
        "orders.read", "orders.write",
        "suppliers.read",
    }),
    "viewer": frozenset({
        "products.read",
        "categories.read",
        "inventory.read",
        "orders.read",
        "suppliers.read",
        "reports.read",
    }),
}


def has_permission(user: User, permission: str) -> bool:
    if user is None:
        return False
    if user.is_superuser or user.role == "admin":
        return True
    granted = ROLE_PERMISSIONS.get(user.role or "", frozenset())
    return "*" in granted or permission in granted


def is_manager(user: User) -> bool:
    return bool(user.is_superuser) or user.role in ("admin", "manager")


async def current_company_user(user: User = Depends(current_active_user)) -> User:
    if user.company_id is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is not attached to a company")
    return user


def require_permission(permission: str):
    """Dependency factory: the current company user, if their role grants `permission`."""
    resource, _, action = permission.partition(".")
    verb = "modify" if action == "write" else "view"

    async def checker(user: User = Depends(current_company_user)) -> User:
        if not has_permission(user, permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"You don't have permission to {verb} {resource}",
            )
        return user

    return checker
