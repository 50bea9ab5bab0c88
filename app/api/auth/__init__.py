from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from app.models.user import User
from app.services import magic_link, otp
from app.services.auth import (
    get_bearer_token,
    get_current_user,
    refresh_token,
    revoke_tokens,
    session_user,
)
from app.services.rate_limit import client_ip, limit_ip


router = APIRouter()


class SendOTPBody(BaseModel):
    email: str = Field(min_length=3, max_length=254)


class VerifyOTPBody(BaseModel):
    email: str = Field(min_length=3, max_length=254)
    otp: str = Field(pattern=r"^\d{6}$")


class MagicLinkBody(BaseModel):
    token: str = Field(min_length=1)


@router.post("/send-otp", dependencies=[Depends(limit_ip(20, 3600))])
def send_otp(body: SendOTPBody, request: Request) -> dict:
    """PUBLIC: Mail a 6-digit code to a college email."""
    result = otp.send_otp(body.email, client_ip(request), request.headers.get("user-agent"))
    return {
        "success": True,
        "message": result["message"],
        "institution": result["institution"],
        "expiresIn": result["expires_in"],
    }


@router.post("/verify-otp")
def verify_otp(body: VerifyOTPBody) -> dict:
    """PUBLIC: Exchange a code for an access token."""
    result = otp.verify_otp(body.email, body.otp)
    return {"success": True, "message": result["message"], "data": {"token": result["token"], "user": result["user"]}}


@router.post("/send-magic-link", dependencies=[Depends(limit_ip(20, 3600))])
def send_magic_link(body: SendOTPBody, request: Request) -> dict:
    result = magic_link.send_magic_link(body.email, client_ip(request), request.headers.get("user-agent"))
    return {
        "success": True,
        "message": result["message"],
        "institution": result["institution"],
        "expiresIn": result["expires_in"],
    }


@router.post("/verify-magic-link")
def verify_magic_link(body: MagicLinkBody) -> dict:
    result = magic_link.verify_magic_link(body.token)
    return {"success": True, "message": result["message"], "data": {"token": result["token"], "user": result["user"]}}


@router.get("/verify-token")
def verify_token(current_user: User = Depends(get_current_user)) -> dict:
    """PROTECTED: Check a token and echo its user."""
    return {"success": True, "valid": True, "user": session_user(current_user)}


@router.get("/me")
def me(current_user: User = Depends(get_current_user)) -> dict:
    return {"success": True, "user": current_user.to_output()}


@router.post("/refresh-token")
def refresh(token: str = Depends(get_bearer_token)) -> dict:
    return {"success": True, "token": refresh_token(token)}


@router.post("/logout")
def logout(current_user: User = Depends(get_current_user)) -> dict:
    # Outstanding tokens carry the old version and stop resolving
    revoke_tokens(current_user)
    return {"success": True, "message": "Logged out successfully"}


@router.get("/supported-domains")
def supported_domains() -> dict:
    """PUBLIC: Allow-listed college domains and known institutions."""
    domains = otp.supported_domains()
    return {
        "success": True,
        "domains": domains,
        "institutions": otp.institution_mapping(),
        "total": len(domains),
    }
