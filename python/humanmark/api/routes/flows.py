"""Verification flow endpoints.

- POST /humanmark/flows         start a flow (or learn none is required)
- POST /humanmark/verifications content-creation hook for hosts calling over HTTP
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from humanmark.api.deps import get_challenge_client, get_client_ip, get_db, get_redis_client
from humanmark.auth.middleware import Actor, get_actor
from humanmark.config import get_settings
from humanmark.responses import success_response
from humanmark.schemas.flows import (
    FlowCreateOut,
    FlowCreateRequest,
    VerificationOut,
    VerificationRequest,
    parse_context,
)
from humanmark.services import orchestrator, verification
from humanmark.services.challenge_client import ChallengeClient
from humanmark.services.rate_limit import get_rate_limiter

router = APIRouter(prefix="/humanmark")


@router.post("/flows")
async def create_flow(
    db: Annotated[Session, Depends(get_db)],
    actor: Annotated[Actor | None, Depends(get_actor)],
    client: Annotated[ChallengeClient, Depends(get_challenge_client)],
    ip: Annotated[str | None, Depends(get_client_ip)],
    body: FlowCreateRequest | None = None,
) -> dict:
    """Start a verification flow for a content context.

    Response:
        {"data": {"required": false}}
        {"data": {"required": true, "token": "...", "challenge": "..."}}
    """
    context = parse_context(body.context if body else None)

    result = await orchestrator.create_flow(
        db,
        context=context.value,
        actor=actor,
        ip=ip,
        client=client,
        rate_limiter=get_rate_limiter(),
        settings=get_settings(),
    )
    return success_response(FlowCreateOut(**result).model_dump(exclude_none=True))


@router.post("/verifications")
def verify_content_action(
    db: Annotated[Session, Depends(get_db)],
    actor: Annotated[Actor | None, Depends(get_actor)],
    redis_client: Annotated[object, Depends(get_redis_client)],
    body: VerificationRequest | None = None,
) -> dict:
    """Check that a content action may proceed, consuming the receipt if required."""
    context = parse_context(body.context if body else None)

    result = verification.verify_action(
        db,
        context=context.value,
        actor=actor,
        receipt=body.receipt if body else None,
        settings=get_settings(),
        redis_client=redis_client,
    )
    return success_response(VerificationOut(**result).model_dump(exclude_none=True))
