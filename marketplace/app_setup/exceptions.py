"""
Gestionnaires d'exceptions.
- MarketplaceError (métier): code HTTP porté par l'exception, corps {"detail", "code"}.
- HTTPException: réponse JSON FastAPI standard.
"""
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from marketplace.errors import MarketplaceError

logger = logging.getLogger(__name__)

def register_exception_handlers(app: FastAPI) -> None:
    """
    Enregistre les handlers globaux.
    - 4xx métier journalisés en info, 5xx en erreur avec leur contexte.
    """
    @app.exception_handler(MarketplaceError)
    async def marketplace_error(request: Request, exc: MarketplaceError):
        if exc.status_code >= 500:
            logger.error("%s %s -> %s %s context=%s", request.method, request.url.path, exc.status_code, exc.code, exc.context)
        else:
            logger.info("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.code)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)
