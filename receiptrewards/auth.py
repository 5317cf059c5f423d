"""
Reviewer identity.

Authentication happens at the gateway; it forwards the reviewer's id,
role and store scope as headers.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException

from receiptrewards.errors import Unauthorized

ROLES = ("admin", "superadmin")


@dataclass(frozen=True)
class Reviewer:
    id: str
    role: str
    store_id: Optional[str] = None

    @property
    def is_superadmin(self) -> bool:
        return self.role == "superadmin"

    def can_access_store(self, store_id: Optional[str]) -> bool:
        if self.is_superadmin:
            return True
        return store_id is not None and store_id == self.store_id


def get_reviewer(
    x_reviewer_id: Optional[str] = Header(default=None),
    x_reviewer_role: Optional[str] = Header(default=None),
    x_store_id: Optional[str] = Header(default=None),
) -> Reviewer:
    if not x_reviewer_id or not x_reviewer_role:
        raise HTTPException(status_code=401, detail="Reviewer identity required")
    if x_reviewer_role not in ROLES:
        raise HTTPException(status_code=401, detail=f"Unknown reviewer role {x_reviewer_role}")
    return Reviewer(id=x_reviewer_id, role=x_reviewer_role, store_id=x_store_id)


def require_superadmin(reviewer: Reviewer) -> None:
    if not reviewer.is_superadmin:
        raise Unauthorized("Super admin privilege required")
