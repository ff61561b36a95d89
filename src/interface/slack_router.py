"""HTTP endpoint for sending a task notification to Slack."""

import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from src.core.errors import NotificationDeliveryError
from src.domain.user import AuthenticatedUser
from src.interface.auth import require_user
from src.models.service_models import SlackNotification
from src.services.notification_service import send_slack_notification


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/slack", tags=["slack"])


@router.post("/notify")
async def notify(notification: SlackNotification, user: AuthenticatedUser = Depends(require_user)) -> JSONResponse:
    """Post a task notification to the configured (or supplied) webhook.

    Raises:
        NotificationDeliveryError: If no webhook is configured or Slack rejects the message
    """
    result = await send_slack_notification(notification)
    if not result.success:
        logger.warning("slack_notify_failed", extra={"user_id": user.id, "error": result.error})
        raise NotificationDeliveryError(result.error or "Slack notification failed")
    return JSONResponse(content={"success": True}, status_code=status.HTTP_200_OK)
