import json
from typing import Any, Dict, List, Optional
import httpx
import redis
from finbot_analytics.core.config import settings
import structlog

logger = structlog.get_logger()

BROADCAST_PATH = "/api/notifications/broadcast"


class BotDispatchError(Exception):
    """The bot backend rejected or could not receive a broadcast job"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def build_broadcast_job(
        text: str,
        parse_mode: Optional[str],
        user_ids: Optional[List[int]]
) -> Dict[str, Any]:
    """
    Payload understood by the bot's broadcast endpoint.

    `user_ids` is None when no explicit segment was requested; the bot then
    applies its default audience policy.
    """
    job: Dict[str, Any] = {"text": text, "retry_count": 0}
    if parse_mode:
        job["parse_mode"] = parse_mode
    if user_ids is not None:
        job["user_ids"] = user_ids
    return job


def bot_headers() -> Dict[str, str]:
    return {"Content-Type": "application/json", "X-Api-Key": settings.bot_api_key or ""}


class NotificationQueue:
    """Redis-based broadcast job queue"""

    def __init__(self):
        try:
            self.redis_client = redis.from_url(settings.redis_url, decode_responses=True)
            # Test connection
            self.redis_client.ping()
            self.queue_name = "broadcast_queue"
            self.dead_letter_queue = "broadcast_dlq"
            self.max_retries = 3
            logger.info("notification_queue_initialized", redis_url=settings.redis_url)
        except Exception as e:
            logger.error("notification_queue_init_failed", error=str(e), redis_url=settings.redis_url)
            raise

    def enqueue(self, job: Dict[str, Any]) -> None:
        self.redis_client.rpush(self.queue_name, json.dumps(job))
        logger.info("broadcast_enqueued", recipients=len(job.get("user_ids") or []))

    def requeue(self, job: Dict[str, Any]) -> None:
        job["retry_count"] = job.get("retry_count", 0) + 1
        if job["retry_count"] >= self.max_retries:
            self.send_to_dlq(job)
        else:
            self.redis_client.rpush(self.queue_name, json.dumps(job))

    def dequeue(self, timeout: int = 5) -> Optional[Dict[str, Any]]:
        """Get the next job from the queue, or None after `timeout` seconds"""
        result = self.redis_client.blpop(self.queue_name, timeout=timeout)
        if result is None:
            return None
        _, job_json = result
        return json.loads(job_json)

    def send_to_dlq(self, job: Dict[str, Any]):
        """Send undeliverable job to dead letter queue"""
        try:
            self.redis_client.rpush(self.dead_letter_queue, json.dumps(job))
            logger.warning("broadcast_sent_to_dlq", retry_count=job.get("retry_count"))
        except Exception as e:
            logger.error("dlq_failed", error=str(e))

    def get_queue_size(self) -> int:
        return self.redis_client.llen(self.queue_name)

    def get_dlq_size(self) -> int:
        return self.redis_client.llen(self.dead_letter_queue)


class BroadcastDispatcher:
    """Hands broadcast jobs to the bot, via the queue when it is enabled"""

    def __init__(self, queue: Optional[NotificationQueue] = None):
        self.queue = queue

    async def dispatch(self, job: Dict[str, Any]) -> Dict[str, Any]:
        if self.queue is not None:
            self.queue.enqueue(job)
            return {"queued": True}

        url = f"{settings.bot_server_url.rstrip('/')}{BROADCAST_PATH}"
        try:
            async with httpx.AsyncClient(timeout=settings.bot_timeout) as client:
                response = await client.post(url, json=job, headers=bot_headers())
        except httpx.HTTPError as e:
            logger.error("broadcast_post_failed", url=url, error=str(e))
            raise BotDispatchError(f"Bot backend unreachable: {e}") from e

        if response.status_code >= 400:
            logger.error("broadcast_rejected", url=url, status_code=response.status_code)
            raise BotDispatchError(f"bot_error_{response.status_code}", response.status_code)

        logger.info("broadcast_posted", recipients=len(job.get("user_ids") or []))
        try:
            data = response.json()
        except ValueError:
            data = None
        return {"queued": False, **(data if isinstance(data, dict) else {})}


# Initialize queue if enabled
notification_queue: Optional[NotificationQueue] = None

if settings.use_queue:
    try:
        notification_queue = NotificationQueue()
    except Exception as e:
        logger.error("failed_to_initialize_queue", error=str(e))
        notification_queue = None
