from __future__ import annotations

from dataclasses import dataclass

from .models import Role


@dataclass(frozen=True)
class TenantContext:
    """Caller identity supplied by the surrounding auth layer; every query is scoped by ``workspace_id``."""

    workspace_id: str
    user_id: str
    role: str

    @property
    def is_trainer(self) -> bool:
        return self.role == Role.TRAINER
