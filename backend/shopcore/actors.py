# Overview: Authenticated-actor capability consumed by the core.

"""
Authentication is owned by an upstream gateway. The core only needs to know
WHO is calling and whether they hold an elevated role; that is the Actor.

The default resolver trusts two headers set by the gateway:
- X-Actor-Id:   integer user id
- X-Actor-Role: customer | moderator | admin (defaults to customer)

Deployments plug their own resolver in via app.config["ACTOR_RESOLVER"]
(a callable taking the Flask request and returning Actor | None).
"""

from __future__ import annotations

from dataclasses import dataclass

ROLE_CUSTOMER = "customer"
ROLE_MODERATOR = "moderator"
ROLE_ADMIN = "admin"

VALID_ROLES = {ROLE_CUSTOMER, ROLE_MODERATOR, ROLE_ADMIN}
ELEVATED_ROLES = {ROLE_ADMIN}


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: str = ROLE_CUSTOMER

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES

    def can_access_user(self, user_id: int) -> bool:
        return self.is_elevated or self.user_id == user_id


def resolve_actor_from_headers(req) -> Actor | None:
    raw_id = req.headers.get("X-Actor-Id")
    if not raw_id:
        return None
    try:
        user_id = int(raw_id)
    except ValueError:
        return None
    role = (req.headers.get("X-Actor-Role") or ROLE_CUSTOMER).strip().lower()
    if role not in VALID_ROLES:
        return None
    return Actor(user_id=user_id, role=role)
