import asyncio
import logging
from app.config import settings
from app.database.supabase_client import SupabaseClient
from app.modules.webhooks.service import WebhookService

logger = logging.getLogger(__name__)


async def retry_failed_webhook_events():
    """Reprocess failed webhook events whose backoff has elapsed."""
    try:
        service = WebhookService(SupabaseClient.get_service_client())
        sweep = await asyncio.to_thread(service.retry_due_events)
        if not sweep.attempted:
            logger.debug("No webhook events due for retry")
    except Exception as e:
        logger.error(f"Error in webhook retry scheduler: {str(e)}")


async def retry_scheduler_loop():
    """Background task that periodically retries failed webhook events"""
    while True:
        try:
            await retry_failed_webhook_events()
        except Exception as e:
            logger.error(f"Error in webhook retry scheduler loop: {str(e)}")

        await asyncio.sleep(settings.retry_scheduler_interval)
