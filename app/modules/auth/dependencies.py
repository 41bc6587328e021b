"""
Dependencias de autenticación para FastAPI.

La emisión de tokens vive en el servicio de identidad; aquí solo se valida
el JWT y se construye el contexto del operador.
"""
from uuid import UUID
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt

from app.modules.auth.schemas import AuthContext
from app.core.config import settings

# Security scheme
security = HTTPBearer()

POS_ROLES = ["owner", "admin", "seller", "cashier"]


class AuthDependencies:
    """Dependencias de autenticación reutilizables."""

    @staticmethod
    def get_auth_context(
        request: Request,
        credentials: HTTPAuthorizationCredentials = Depends(security)
    ) -> AuthContext:
        """
        Obtener contexto de autenticación completo con tenant.
        Tokens de contexto traen tenant_id y user_role; los tokens de acceso
        requieren el header X-Company-ID.
        """
        credentials_exception = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No se pudieron validar las credenciales",
            headers={"WWW-Authenticate": "Bearer"},
        )

        try:
            payload = jwt.decode(
                credentials.credentials,
                settings.APP_SECRET_STRING,
                algorithms=[settings.ALGORITHM]
            )
        except jwt.PyJWTError:
            raise credentials_exception

        user_id = payload.get("sub")
        if user_id is None:
            raise credentials_exception

        if payload.get("type", "access") == "context":
            tenant_id = payload.get("tenant_id")
        else:
            tenant_id = request.headers.get("X-Company-ID") or getattr(request.state, "tenant_id", None)

        try:
            return AuthContext(
                user_id=UUID(str(user_id)),
                tenant_id=UUID(str(tenant_id)) if tenant_id else None,
                user_role=payload.get("user_role")
            )
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Identificador de usuario o empresa inválido"
            )

    @staticmethod
    def require_role(allowed_roles: list[str]):
        """
        Dependencia para requerir roles específicos.
        """
        def role_checker(auth_context: AuthContext = Depends(AuthDependencies.get_auth_context)):
            if not auth_context.tenant_id:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Se requiere seleccionar una empresa"
                )

            if auth_context.user_role not in allowed_roles:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Se requiere uno de estos roles: {', '.join(allowed_roles)}"
                )

            return auth_context
        return role_checker

    @staticmethod
    def require_pos_role():
        """Dependencia para operar la caja del punto de venta."""
        return AuthDependencies.require_role(POS_ROLES)


get_auth_context = AuthDependencies.get_auth_context
require_pos_role = AuthDependencies.require_pos_role
