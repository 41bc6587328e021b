from pydantic import BaseModel
from typing import Optional
from uuid import UUID


class AuthContext(BaseModel):
    """Operador autenticado y empresa (tenant) activa del request."""
    user_id: UUID
    tenant_id: Optional[UUID] = None
    user_role: Optional[str] = None
