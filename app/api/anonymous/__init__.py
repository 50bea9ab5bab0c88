from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from app.models.user import User
from app.services import anonymous as anonymous_service
from app.services.auth import get_current_user
from app.services.rate_limit import client_ip, limit_route


router = APIRouter()


class CreateRequestBody(BaseModel):
    title: str = Field(min_length=5, max_length=100)
    description: str = Field(min_length=10, max_length=500)
    skills_needed: list[str] = Field(min_length=1)
    estimated_time: str
    urgency_level: str | None = None
    allow_same_college: bool = True
    college_hint: str | None = Field(default=None, max_length=50)
    is_remote: bool = True
    tags: list[str] = []


@router.post("/request", status_code=201)
def create_request(
    body: CreateRequestBody, request: Request, current_user: User = Depends(limit_route(10, 3600)),
) -> dict:
    """PROTECTED: Post a help request without revealing who asked. Ten per hour per user."""
    help_request = anonymous_service.create_request(
        current_user,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        **body.model_dump(),
    )
    return {
        "success": True,
        "message": "Anonymous help request created successfully",
        "request": help_request.to_output(exclude=["help_offers"]),
    }


@router.get("/feed")
def feed(
    skills: list[str] = Query(default=[]),
    urgency: list[str] = Query(default=[]),
    limit: int = Query(20, ge=1, le=50),
) -> dict:
    """PUBLIC: Active, unexpired requests, most urgent first."""
    requests = anonymous_service.active_feed(limit=limit, skills=skills, urgency=urgency)
    return {"success": True, "requests": [r.to_feed_item() for r in requests], "total": len(requests)}


@router.get("/my-requests")
def my_requests(current_user: User = Depends(get_current_user)) -> dict:
    requests = anonymous_service.my_requests(current_user)
    return {"success": True, "requests": [r.to_output() for r in requests], "total": len(requests)}


@router.get("/request/{session_id}")
def get_request(session_id: str) -> dict:
    help_request = anonymous_service.view_request(session_id)
    return {"success": True, "request": help_request.to_feed_item()}


class OfferHelpBody(BaseModel):
    message: str = Field(min_length=1, max_length=500)
    is_anonymous: bool = False


@router.post("/request/{session_id}/help")
def offer_help(session_id: str, body: OfferHelpBody, current_user: User = Depends(limit_route(30, 3600))) -> dict:
    offer = anonymous_service.offer_help(session_id, current_user, body.message, body.is_anonymous)
    return {
        "success": True,
        "message": "Help offer submitted successfully",
        "help_offer": offer.to_output(exclude=["helper_id"]),
    }


class MatchBody(BaseModel):
    offer_id: str


@router.post("/request/{session_id}/match")
def match_helper(session_id: str, body: MatchBody, current_user: User = Depends(get_current_user)) -> dict:
    """PROTECTED: Requester picks one of the offers; the request leaves the feed."""
    offer = anonymous_service.match_helper(session_id, body.offer_id, current_user)
    return {"success": True, "message": "Helper matched", "matched_helper_id": offer.helper_id}


class StatusBody(BaseModel):
    status: str


@router.put("/request/{session_id}/status")
def update_status(session_id: str, body: StatusBody, current_user: User = Depends(get_current_user)) -> dict:
    help_request = anonymous_service.update_status(session_id, body.status, current_user)
    return {"success": True, "message": f"Request marked as {help_request.status}", "status": help_request.status}
