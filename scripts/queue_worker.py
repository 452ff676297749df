"""
Queue Worker - Delivers broadcast jobs from the Redis queue to the bot backend

Usage:
    python scripts/queue_worker.py
"""
import sys
import time
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import requests
import structlog
from finbot_analytics.core.config import settings
from finbot_analytics.services.dispatch import BROADCAST_PATH, bot_headers, notification_queue

logger = structlog.get_logger()


def deliver(job: dict) -> bool:
    """POST one broadcast job to the bot; returns True when accepted"""
    url = f"{settings.bot_server_url.rstrip('/')}{BROADCAST_PATH}"
    try:
        response = requests.post(url, json=job, headers=bot_headers(), timeout=settings.bot_timeout)
    except requests.RequestException as e:
        logger.error("broadcast_delivery_failed", error=str(e), retry_count=job.get("retry_count", 0))
        return False

    if response.status_code >= 400:
        logger.error(
            "broadcast_delivery_rejected",
            status_code=response.status_code,
            retry_count=job.get("retry_count", 0)
        )
        return False

    logger.info("broadcast_delivered", recipients=len(job.get("user_ids") or []))
    return True


def main():
    """Main worker loop"""
    if notification_queue is None:
        print("Queue is not enabled (set USE_QUEUE=true and check REDIS_URL).")
        sys.exit(1)

    logger.info("worker_started", queue=notification_queue.queue_name)
    print("Broadcast worker started. Press Ctrl+C to stop.")

    try:
        while True:
            job = notification_queue.dequeue(timeout=5)

            if job is None:
                time.sleep(1)
                continue

            if not deliver(job):
                notification_queue.requeue(job)

    except KeyboardInterrupt:
        logger.info("worker_stopped")
        print("\nWorker stopped.")
    except Exception as e:
        logger.error("worker_error", error=str(e))
        raise


if __name__ == "__main__":
    main()
