"""Assessment invites — the owner emails a client their assessment link."""

from fastapi import APIRouter, Body, Depends, HTTPException

from clientkey.security import current_user
from clientkey.services.assessments import InviteValidationError, send_invite
from clientkey.services.mailer import EmailSendError

router = APIRouter(prefix="/assessments")


@router.post("/invite")
def invite(body: dict = Body(...), user: dict = Depends(current_user)):
    try:
        resend_id = send_invite(
            user,
            client_id=str(body.get("clientId") or body.get("client_id") or ""),
            client_name=str(body.get("clientName") or body.get("client_name") or "").strip(),
            client_email=str(body.get("clientEmail") or body.get("client_email") or "").strip(),
        )
    except InviteValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EmailSendError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"success": True, "id": resend_id}
