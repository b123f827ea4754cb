"""
Invitation routes
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db
from middleware.auth_dependencies import (
    CurrentUser,
    get_current_user,
    ensure_organization_access,
    ensure_workspace_access,
)
from services.invitation_service import InvitationService
from schemas.invitation import InvitationCreate, InvitationResponse


router = APIRouter(prefix="/api/v1/invitations", tags=["invitations"])


async def _ensure_can_manage(db: AsyncSession, current_user: CurrentUser, invitation) -> None:
    if invitation.workspace_id:
        await ensure_workspace_access(db, current_user, invitation.workspace_id, admin=True)
    else:
        await ensure_organization_access(db, current_user, invitation.organization_id, admin=True)


@router.post("/", response_model=InvitationResponse, status_code=status.HTTP_201_CREATED)
async def create_invitation(
    invitation_data: InvitationCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Invite an email address into an organization or one of its workspaces"""
    if invitation_data.workspace_id:
        await ensure_workspace_access(db, current_user, invitation_data.workspace_id, admin=True)
    else:
        await ensure_organization_access(db, current_user, invitation_data.organization_id, admin=True)

    invitation = await InvitationService(db).create_invitation(
        email=invitation_data.email,
        organization_id=invitation_data.organization_id,
        workspace_id=invitation_data.workspace_id,
        role=invitation_data.role,
        invited_by=current_user.user_id,
    )
    return {**invitation.to_dict(), "token": invitation.token}


@router.get("/", response_model=List[InvitationResponse])
async def list_invitations(
    organization_id: Optional[str] = Query(None, description="Invitations of an organization"),
    workspace_id: Optional[str] = Query(None, description="Invitations of a workspace"),
    include_workspace_invitations: bool = Query(False, description="With organization_id, also list workspace invitations"),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Without filters, lists the invitations addressed to the caller"""
    service = InvitationService(db)

    if workspace_id:
        await ensure_workspace_access(db, current_user, workspace_id, admin=True)
        invitations = await service.list_workspace_invitations(workspace_id)
    elif organization_id:
        await ensure_organization_access(db, current_user, organization_id, admin=True)
        invitations = await service.list_organization_invitations(organization_id, include_workspace_invitations)
    else:
        invitations = await service.list_invitations_by_email(current_user.email)

    return [i.to_dict() for i in invitations]


@router.get("/token/{token}", response_model=InvitationResponse)
async def get_invitation_by_token(
    token: str,
    db: AsyncSession = Depends(get_db)
):
    """Public lookup used by the accept page"""
    invitation = await InvitationService(db).get_invitation_by_token(token)
    return invitation.to_dict()


@router.post("/accept/{token}", response_model=InvitationResponse)
async def accept_invitation(
    token: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    invitation = await InvitationService(db).accept_invitation(token, current_user.user_id)
    return invitation.to_dict()


@router.get("/{invitation_id}", response_model=InvitationResponse)
async def get_invitation(
    invitation_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    invitation = await InvitationService(db).get_invitation(invitation_id)
    await _ensure_can_manage(db, current_user, invitation)
    return invitation.to_dict()


@router.post("/{invitation_id}/resend", response_model=InvitationResponse)
async def resend_invitation(
    invitation_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Restart the expiry window of a pending invitation"""
    service = InvitationService(db)
    await _ensure_can_manage(db, current_user, await service.get_invitation(invitation_id))
    invitation = await service.resend_invitation(invitation_id)
    return invitation.to_dict()


@router.post("/{invitation_id}/cancel", response_model=InvitationResponse)
async def cancel_invitation(
    invitation_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = InvitationService(db)
    await _ensure_can_manage(db, current_user, await service.get_invitation(invitation_id))
    invitation = await service.cancel_invitation(invitation_id, canceled_by=current_user.user_id)
    return invitation.to_dict()
