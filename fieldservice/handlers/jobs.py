"""
Периодические задачи, которые выполняет JobQueue бота.
"""

import logging

from telegram.ext import ContextTypes

from fieldservice.core.exceptions import FieldServiceError
from fieldservice.services.request_store import RequestStore

logger = logging.getLogger(__name__)


async def escalate_stale_requests_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    """Повышает приоритет открытых заявок, которые слишком долго ждут."""
    store: RequestStore = context.application.bot_data["store"]
    try:
        escalated = await store.escalate_stale_requests()
    except FieldServiceError as e:
        logger.error(f"Escalation job failed: {e}", exc_info=True)
        return
    if escalated:
        logger.info(f"Escalation job: {len(escalated)} requests marked urgent.")
