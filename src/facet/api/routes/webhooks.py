"""Provider callback endpoint.

Providers call ``POST /webhooks/ai?token=<callback_token>`` when a task finishes.
The token is generated per job and handed to the provider in the callback URL.
"""

import json

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from facet.api.dependencies import get_services
from facet.services.webhook import WebhookRejected

logger = structlog.get_logger()
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/ai")
async def receive_ai_callback(
    request: Request,
    token: str | None = Query(default=None),
    services=Depends(get_services),
):
    """Receive a provider completion callback.

    HTTP Status Codes:
        200: Callback applied, deferred to the reconciler, or already processed
        400: Malformed payload or missing task id
        401: Missing or invalid callback token
        404: No job for the task id
    """
    raw_body = await request.body()
    try:
        payload = json.loads(raw_body)
    except ValueError:
        logger.warning("webhook.invalid_json", body_size=len(raw_body))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

    try:
        result = await services.webhook.handle(payload, token)
    except WebhookRejected as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return {"status": result.status, "job_id": result.job_id, "message": result.message}
