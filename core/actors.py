"""
Purpose: Who is calling.
The core does not authenticate anyone; the route layer hands it an Actor
(identity + role) taken from whatever auth system issued the session.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ActorRole(str, Enum):
    CUSTOMER = "customer"
    DRIVER = "driver"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    id: str
    role: ActorRole

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN

    @classmethod
    def new(cls, actor_id, role: str | ActorRole) -> Actor:
        if isinstance(role, str):
            role = ActorRole(role)
        return cls(id=str(actor_id), role=role)
