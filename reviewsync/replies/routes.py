from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..auth import Caller, get_caller
from ..db.models import ReviewReply, as_utc
from ..deps import Services, get_services
from ..integrations.google.errors import IntegrationError

router = APIRouter(prefix="/v1", tags=["Replies"])


class EditBody(BaseModel):
    text: str


class PublishBody(BaseModel):
    text: str | None = None


def _reply_dict(reply: ReviewReply) -> dict:
    posted_at = as_utc(reply.posted_at)
    return {
        "id": reply.id,
        "review_id": reply.review_id,
        "status": reply.status,
        "draft_text": reply.draft_text,
        "final_text": reply.final_text,
        "risk_tags": list(reply.risk_tags or []),
        "generation_count": reply.generation_count,
        "last_error_code": reply.last_error_code,
        "last_error_message": reply.last_error_message,
        "platform_reply_id": reply.platform_reply_id,
        "posted_at": posted_at.isoformat() if posted_at else None,
    }


@router.post("/reviews/{review_id}/reply")
async def generate_reply(review_id: str, caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    reply = (await services.workflow.generate(review_id, caller.business_id)).unwrap()
    return _reply_dict(reply)


@router.patch("/replies/{reply_id}")
async def edit_reply(
    reply_id: str,
    body: EditBody,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    reply = (await services.workflow.edit(reply_id, caller.business_id, body.text)).unwrap()
    return _reply_dict(reply)


@router.post("/replies/{reply_id}/approve")
async def approve_reply(reply_id: str, caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    reply = (await services.workflow.approve(reply_id, caller.business_id)).unwrap()
    return _reply_dict(reply)


@router.post("/replies/{reply_id}/post")
async def publish_reply(
    reply_id: str,
    body: PublishBody | None = None,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
):
    outcome = await services.workflow.publish(reply_id, caller.business_id, body.text if body else None)
    if outcome.error is not None:
        err = outcome.error
        raise IntegrationError(
            err.kind,
            err.message,
            retry_after=err.retry_after,
            details={**err.details, "reply_id": outcome.reply_id, "status": outcome.status},
        )
    return outcome.as_dict()
