"""Password sign-in and sign-out against Supabase Auth."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.concurrency import run_in_threadpool

from ...auth import Identity, get_auth_manager
from ...core.portal_session import get_session_registry
from ...errors import AuthRequired
from ..dependencies import get_current_identity
from ..schemas import SessionUser, SignInRequest, SignInResponse, SignOutResponse

router = APIRouter(prefix="/auth")


@router.post("/sign-in", response_model=SignInResponse, status_code=status.HTTP_200_OK)
def sign_in(payload: SignInRequest) -> SignInResponse:
    try:
        session = get_auth_manager().sign_in(payload.email, payload.password)
    except AuthRequired as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    identity: Identity = session["identity"]
    return SignInResponse(
        access_token=session["access_token"],
        refresh_token=session.get("refresh_token"),
        expires_in=session.get("expires_in"),
        user=SessionUser(**identity.to_dict()),
    )


@router.post("/sign-out", response_model=SignOutResponse, status_code=status.HTTP_200_OK)
async def sign_out(identity: Identity = Depends(get_current_identity)) -> SignOutResponse:
    """Revoke the caller's session and close any portal views it still has open."""

    await get_session_registry().close_user(identity.id)
    signed_out = await run_in_threadpool(get_auth_manager().sign_out, identity.access_token or "")
    return SignOutResponse(signed_out=signed_out)
