"""
Contexte de requête explicite (utilisateur + rôle) résolu depuis le token Supabase.

- Token: priorité au header Bearer, fallback cookie sb_access.
- Rôle: user_metadata.role (admin, supplier), sinon customer.
- Les services reçoivent un RequestContext, jamais la requête ni une session globale.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

from fastapi import Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from marketplace.infra import supabase_client

COOKIE_NAME = "sb_access"

ROLE_ADMIN = "admin"
ROLE_SUPPLIER = "supplier"
ROLE_CUSTOMER = "customer"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    user_id: str
    role: str = ROLE_CUSTOMER
    email: Optional[str] = None
    token: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_supplier(self) -> bool:
        return self.role == ROLE_SUPPLIER


def determine_role(metadata: Optional[Dict[str, Any]]) -> str:
    role = str((metadata or {}).get("role", "")).lower()
    if role in (ROLE_ADMIN, ROLE_SUPPLIER):
        return role
    return ROLE_CUSTOMER


def _token_from_request(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(COOKIE_NAME)


def get_user_from_access_token(access_token: str) -> Dict[str, Any]:
    """Récupère et normalise l'utilisateur depuis supabase.auth.get_user(access_token)."""
    res = supabase_client.get_supabase().auth.get_user(access_token)
    user = getattr(res, "user", None) or {}
    if not isinstance(user, dict):
        user = {
            "id": getattr(user, "id", None),
            "email": getattr(user, "email", None),
            "user_metadata": getattr(user, "user_metadata", None),
        }
    return user or {}


async def get_request_context(request: Request) -> RequestContext:
    token = _token_from_request(request)
    if not token:
        raise HTTPException(status_code=401, detail="Non authentifié")
    try:
        user = await run_in_threadpool(get_user_from_access_token, token)
    except Exception:
        logger.info("security.get_request_context: token rejeté")
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")
    if not user.get("id"):
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")
    return RequestContext(
        user_id=str(user["id"]),
        role=determine_role(user.get("user_metadata")),
        email=user.get("email"),
        token=token,
    )


def require_user(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    return ctx


def require_supplier_or_admin(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    if not (ctx.is_admin or ctx.is_supplier):
        raise HTTPException(status_code=403, detail="Accès réservé aux fournisseurs")
    return ctx
