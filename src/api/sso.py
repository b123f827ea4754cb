"""
Federated login routes for OIDC and SAML providers
"""
from typing import Optional
from fastapi import APIRouter, Depends, Form, Query, Request
from fastapi.responses import RedirectResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.database import get_db
from core.rate_limit import client_ip, rate_limit
from middleware.auth_dependencies import CurrentUser, get_current_user
from services.identity_provider import IdentityProviderService
from schemas.identity_provider import SSOLoginResponse, SSOLogoutRequest


router = APIRouter(prefix="/api/v1/auth", tags=["sso"])


async def _complete_login(
    request: Request, db: AsyncSession, provider_id: str, params: dict
) -> dict:
    return await IdentityProviderService(db).handle_callback(
        provider_id,
        params,
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )


# OIDC

@router.get("/oidc/{provider_id}/login", dependencies=[Depends(rate_limit("auth", "register"))])
async def oidc_login(
    provider_id: str,
    redirect_url: str = Query("/", description="Where to send the browser after login"),
    db: AsyncSession = Depends(get_db)
):
    url = await IdentityProviderService(db).initiate_authentication(provider_id, redirect_url)
    return RedirectResponse(url, status_code=302)


@router.get("/oidc/callback/{provider_id}", response_model=SSOLoginResponse)
@router.get("/oidc/{provider_id}/callback", response_model=SSOLoginResponse)
async def oidc_callback(
    provider_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """Authorization code callback; returns the local bearer token"""
    return await _complete_login(request, db, provider_id, dict(request.query_params))


@router.post("/oidc/{provider_id}/logout")
async def oidc_logout(
    provider_id: str,
    logout: SSOLogoutRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    url = await IdentityProviderService(db).logout(provider_id, logout.session_id, current_user.user_id)
    return {"logout_url": url}


@router.get("/oidc/logout/callback/{provider_id}")
async def oidc_logout_callback(provider_id: str):
    return RedirectResponse(settings.APP_URL, status_code=302)


# SAML

@router.get("/saml/{provider_id}/login", dependencies=[Depends(rate_limit("auth", "register"))])
async def saml_login(
    provider_id: str,
    redirect_url: str = Query("/", description="Where to send the browser after login"),
    db: AsyncSession = Depends(get_db)
):
    url = await IdentityProviderService(db).initiate_authentication(provider_id, redirect_url)
    return RedirectResponse(url, status_code=302)


@router.post("/saml/callback/{provider_id}", response_model=SSOLoginResponse)
@router.post("/saml/{provider_id}/callback", response_model=SSOLoginResponse)
async def saml_callback(
    provider_id: str,
    request: Request,
    SAMLResponse: Optional[str] = Form(None),
    RelayState: Optional[str] = Form(None),
    db: AsyncSession = Depends(get_db)
):
    """Assertion consumer service (HTTP-POST binding)"""
    params = {"SAMLResponse": SAMLResponse, "RelayState": RelayState}
    return await _complete_login(request, db, provider_id, params)


@router.get("/saml/{provider_id}/metadata")
async def saml_metadata(
    provider_id: str,
    db: AsyncSession = Depends(get_db)
):
    """Public SP metadata for configuring the IdP"""
    metadata = await IdentityProviderService(db).generate_service_provider_metadata(provider_id)
    return Response(content=metadata, media_type="application/xml")


@router.post("/saml/{provider_id}/logout")
async def saml_logout(
    provider_id: str,
    logout: SSOLogoutRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    url = await IdentityProviderService(db).logout(provider_id, logout.session_id, current_user.user_id)
    return {"logout_url": url}


@router.get("/saml/logout/callback/{provider_id}")
@router.post("/saml/logout/callback/{provider_id}")
async def saml_logout_callback(provider_id: str):
    return RedirectResponse(settings.APP_URL, status_code=302)
