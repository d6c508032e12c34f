from fastapi import APIRouter, Depends, status
from app.api.deps import get_hub, get_notification_center, get_session_identity
from app.schemas.common import ActionResult, ResponseModel
from app.schemas.invitation import InvitationCreate
from app.services.identity import SessionIdentity
from app.services.notification_center import NotificationCenter, NotificationHub

router = APIRouter()


@router.post("", response_model=ResponseModel, status_code=status.HTTP_201_CREATED)
async def send_invitation(
    payload: InvitationCreate,
    identity: SessionIdentity = Depends(get_session_identity),
    hub: NotificationHub = Depends(get_hub),
):
    """Invite a registered user to a project the caller belongs to."""
    record = await hub.store.send_invitation(identity, payload)
    return ResponseModel(success=True, data=record.model_dump(mode="json"), message="Invitation sent")


@router.delete("/{invitation_id}", response_model=ResponseModel)
async def cancel_invitation(
    invitation_id: str,
    identity: SessionIdentity = Depends(get_session_identity),
    hub: NotificationHub = Depends(get_hub),
):
    await hub.store.cancel_invitation(invitation_id, identity)
    return ResponseModel(success=True, message="Invitation cancelled")


@router.post("/{invitation_id}/accept", response_model=ResponseModel)
async def accept_invitation(
    invitation_id: str,
    center: NotificationCenter = Depends(get_notification_center)
):
    """Accept a pending invitation addressed to the caller and join the project."""
    await center.refresh()
    invitation = center.aggregator.find_invitation(invitation_id)
    issued = await center.accept_invitation(invitation_id)
    result = ActionResult(issued=issued, project_id=invitation.project_id if issued else None)
    return ResponseModel(
        success=True,
        data=result.to_data(),
        message="Invitation accepted" if issued else "Invitation already handled"
    )


@router.post("/{invitation_id}/decline", response_model=ResponseModel)
async def decline_invitation(
    invitation_id: str,
    center: NotificationCenter = Depends(get_notification_center)
):
    await center.refresh()
    issued = await center.decline_invitation(invitation_id)
    return ResponseModel(
        success=True,
        data=ActionResult(issued=issued).to_data(),
        message="Invitation declined" if issued else "Invitation already handled"
    )
