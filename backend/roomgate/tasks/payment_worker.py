"""Background worker for payment jobs queued by the webhook handler

Each job runs in its own DB session, concurrently with other jobs, without
blocking the polling loop.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from sqlalchemy.orm import Session

from roomgate.core.errors import RoomGateError
from roomgate.db.session import SessionLocal
from roomgate.db.task_queue import (
    PAYMENT_TASK_TYPE, cleanup_stale_tasks, dequeue_task, get_task_status,
    mark_task_completed, mark_task_failed, mark_task_processing
)
from roomgate.services.payment_service import process_payment
from roomgate.services.stripe_service import StripePayoutClient

logger = logging.getLogger(__name__)
payments_logger = logging.getLogger("payments")

STALE_TASK_TIMEOUT = 3600  # seconds

# Strong references to in-flight jobs; the event loop only keeps weak ones
_running_tasks: set = set()


def process_payment_task(
    task_data: Dict[str, Any],
    payout_client: StripePayoutClient,
    session_factory: Callable[[], Session] = SessionLocal
) -> None:
    """Process a single payment task. Errors end up in task metadata, never raised."""
    task_id = task_data.get("task_id")
    payload = task_data.get("payload", {})

    mark_task_processing(task_id)
    db = session_factory()
    try:
        purchase = process_payment(payload, db, payout_client)
        mark_task_completed(task_id, {"purchase_id": purchase.id, "status": purchase.status})
        payments_logger.info(
            f"Task {task_id}: payment {payload.get('payment_id')} settled as {purchase.status} "
            f"(purchase {purchase.id})"
        )
    except RoomGateError as e:
        # Bad input, unknown room, terminal status conflicts: retrying will not help
        if e.status_code >= 500:
            logger.error(f"Task {task_id} failed: {e.message}", exc_info=True)
            mark_task_failed(task_id, e.message, retry=True)
        else:
            logger.warning(f"Task {task_id} rejected: {e.message}")
            mark_task_failed(task_id, e.message, retry=False)
    except Exception as e:
        logger.error(f"Task {task_id} failed: {e}", exc_info=True)
        mark_task_failed(task_id, str(e), retry=True)
    finally:
        try:
            db.close()
        except Exception as e:
            logger.warning(f"Error closing DB session for task {task_id}: {e}")


async def _wait_for_retry_window(task_id: str) -> None:
    """Honour the exponential backoff recorded on retried tasks"""
    task_meta = get_task_status(task_id)
    retry_after_str = task_meta.get("retry_after") if task_meta else None
    if not retry_after_str:
        return
    try:
        retry_after = datetime.fromisoformat(retry_after_str.replace('Z', '+00:00'))
    except (ValueError, TypeError) as e:
        logger.warning(f"Error parsing retry_after for task {task_id}: {e}")
        return
    delay_seconds = (retry_after - datetime.now(timezone.utc)).total_seconds()
    if delay_seconds > 0:
        logger.info(f"Task {task_id} is a retry, waiting {delay_seconds:.0f}s before processing")
        await asyncio.sleep(delay_seconds)


async def _run_task(task_data: Dict[str, Any], payout_client: StripePayoutClient) -> None:
    await _wait_for_retry_window(task_data.get("task_id"))
    # DB and Stripe calls are blocking; keep them off the event loop
    await asyncio.to_thread(process_payment_task, task_data, payout_client)


async def payment_worker_task(payout_client: StripePayoutClient) -> None:
    """Main worker loop: poll the payment queue and spawn a task per job"""
    logger.info("Starting payment worker task")

    while True:
        try:
            cleanup_stale_tasks(timeout_seconds=STALE_TASK_TIMEOUT)

            task_data = await dequeue_task(PAYMENT_TASK_TYPE, timeout=5)
            if task_data is None:
                continue

            task = asyncio.create_task(_run_task(task_data, payout_client))
            _running_tasks.add(task)
            task.add_done_callback(_running_tasks.discard)
        except asyncio.CancelledError:
            logger.info("Payment worker task cancelled")
            raise
        except Exception as e:
            logger.error(f"Error in payment worker loop: {e}", exc_info=True)
            await asyncio.sleep(5)


async def drain_running_tasks() -> None:
    """Wait for in-flight payment jobs to finish; used on shutdown after the loop is cancelled"""
    if not _running_tasks:
        return
    logger.info(f"Waiting for {len(_running_tasks)} in-flight payment job(s)")
    await asyncio.gather(*list(_running_tasks), return_exceptions=True)
