import asyncio
import logging

from config.constants import EMAIL_MAX_RETRIES, EMAIL_SEND_DELAY_SECONDS
from utils import email_service

logger = logging.getLogger(__name__)

# kind -> coroutine function taking the job payload as kwargs
SENDERS = {
    "purchase_delivery": email_service.send_purchase_delivery,
    "payment_success": email_service.send_payment_success,
    "payment_expired": email_service.send_payment_expired,
}

_queue: asyncio.Queue | None = None


def get_queue() -> asyncio.Queue:
    global _queue
    if _queue is None:
        _queue = asyncio.Queue()
    return _queue


def enqueue(kind: str, **payload) -> None:
    if kind not in SENDERS:
        raise ValueError(f"Unknown email kind: {kind}")
    queue = get_queue()
    queue.put_nowait({"kind": kind, "payload": payload, "retry_count": 0})
    logger.info("EMAIL_QUEUED kind=%s to=%s size=%s", kind, payload.get("to"), queue.qsize())


async def process_next() -> bool:
    """
    Send one queued email. A failed send goes back to the end of the
    queue until it has been retried EMAIL_MAX_RETRIES times.
    Returns True when the email went out.
    """
    queue = get_queue()
    job = await queue.get()
    try:
        await SENDERS[job["kind"]](**job["payload"])
        return True
    except Exception:
        job["retry_count"] += 1
        to = job["payload"].get("to")
        if job["retry_count"] <= EMAIL_MAX_RETRIES:
            logger.warning(
                "EMAIL_RETRY kind=%s to=%s attempt=%s/%s",
                job["kind"], to, job["retry_count"], EMAIL_MAX_RETRIES,
            )
            queue.put_nowait(job)
        else:
            logger.exception("EMAIL_DROPPED kind=%s to=%s max retries reached", job["kind"], to)
        return False
    finally:
        queue.task_done()


async def email_worker():
    logger.info("Email queue worker started")
    while True:
        try:
            await process_next()
        except Exception:
            logger.exception("Email worker error")
        # throttle SMTP
        await asyncio.sleep(EMAIL_SEND_DELAY_SECONDS)
