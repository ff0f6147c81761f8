"""
portal/auth/identity.py
-----------------------
The acting identity handed to the workflow core.

The core trusts this value: authentication happens before it is built
(session login in portal/auth/routes.py, or any other provider).
"""
from __future__ import annotations
from dataclasses import dataclass


@dataclass(frozen=True)
class Identity:
    id:         int
    role:       str                 # 'requester' | 'approver' | 'admin'
    department: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == 'admin'
