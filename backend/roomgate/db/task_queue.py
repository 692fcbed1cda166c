"""Redis-based task queue for deferred work

The webhook handler pushes jobs here and returns immediately; the payment
worker pops them and runs them in its own database session. Task metadata
(status, error, result) is kept in a Redis hash so deferred outcomes stay
observable after the HTTP response has been sent.
"""
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from roomgate.db.redis import get_redis_client, get_async_redis_client

logger = logging.getLogger(__name__)

# Redis key prefixes
QUEUE_KEY_PREFIX = "task:queue:"
META_KEY_PREFIX = "task:meta:"
PROCESSING_SET_KEY = "task:processing"

# Task types
PAYMENT_TASK_TYPE = "process_payment"

# Task TTL (7 days for completed/failed task metadata)
TASK_META_TTL = 7 * 24 * 60 * 60


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def enqueue_task(
    task_type: str,
    payload: Dict[str, Any],
    retry_count: int = 0,
    max_retries: int = 3,
    retry_after: Optional[datetime] = None
) -> str:
    """Enqueue a task

    Args:
        task_type: Type of task (e.g., 'process_payment')
        payload: JSON-serialisable task payload
        retry_count: Current retry attempt (0 for new tasks)
        max_retries: Maximum number of automatic retries
        retry_after: Earliest time the worker may run this task

    Returns:
        task_id: Unique task identifier
    """
    task_id = str(uuid.uuid4())
    created_at = _now()

    meta = {
        "task_id": task_id,
        "task_type": task_type,
        "payload": json.dumps(payload),
        "retry_count": str(retry_count),
        "max_retries": str(max_retries),
        "created_at": created_at,
        "status": "pending"
    }
    if retry_after:
        meta["retry_after"] = retry_after.isoformat()

    meta_key = f"{META_KEY_PREFIX}{task_id}"
    client = get_redis_client()
    client.hset(meta_key, mapping=meta)
    client.expire(meta_key, TASK_META_TTL)

    task_json = json.dumps({
        "task_id": task_id,
        "task_type": task_type,
        "payload": payload,
        "retry_count": retry_count,
        "max_retries": max_retries,
        "created_at": created_at,
    })
    client.lpush(f"{QUEUE_KEY_PREFIX}{task_type}", task_json)

    logger.info(f"Enqueued task {task_id} of type {task_type} (retry_count={retry_count})")
    return task_id


async def dequeue_task(task_type: str, timeout: int = 5) -> Optional[Dict[str, Any]]:
    """Dequeue a task from the queue (blocking)

    Args:
        task_type: Type of task to dequeue
        timeout: Blocking timeout in seconds

    Returns:
        Task dict if task available, None if timeout
    """
    client = get_async_redis_client()
    if client is None:
        logger.error("Async Redis client not available")
        return None

    try:
        # BRPOP returns [queue_name, task_json] or None
        result = await client.brpop(f"{QUEUE_KEY_PREFIX}{task_type}", timeout=timeout)
        if result is None:
            return None
        _, task_json = result
        return json.loads(task_json)
    except Exception as e:
        logger.error(f"Error dequeuing task: {e}", exc_info=True)
        return None


def pending_task_count(task_type: str) -> int:
    """Number of tasks waiting in a queue"""
    return int(get_redis_client().llen(f"{QUEUE_KEY_PREFIX}{task_type}"))


def get_task_status(task_id: str) -> Optional[Dict[str, Any]]:
    """Get task status and metadata

    Returns:
        Task metadata dict or None if not found
    """
    meta = get_redis_client().hgetall(f"{META_KEY_PREFIX}{task_id}")
    if not meta:
        return None

    if "payload" in meta:
        meta["payload"] = json.loads(meta["payload"])
    if "result" in meta:
        meta["result"] = json.loads(meta["result"])
    if "retry_count" in meta:
        meta["retry_count"] = int(meta["retry_count"])
    if "max_retries" in meta:
        meta["max_retries"] = int(meta["max_retries"])

    return meta


def mark_task_processing(task_id: str) -> None:
    meta_key = f"{META_KEY_PREFIX}{task_id}"
    client = get_redis_client()
    client.hset(meta_key, mapping={"status": "processing", "started_at": _now()})
    client.sadd(PROCESSING_SET_KEY, task_id)
    logger.debug(f"Marked task {task_id} as processing")


def mark_task_completed(task_id: str, result: Optional[Dict[str, Any]] = None) -> None:
    meta_key = f"{META_KEY_PREFIX}{task_id}"
    client = get_redis_client()
    client.hset(meta_key, mapping={"status": "completed", "completed_at": _now()})
    if result:
        client.hset(meta_key, "result", json.dumps(result))
    client.srem(PROCESSING_SET_KEY, task_id)
    logger.info(f"Marked task {task_id} as completed")


def mark_task_failed(task_id: str, error: str, retry: bool = True) -> Optional[str]:
    """Mark task as failed and optionally schedule a retry

    Args:
        task_id: Task identifier
        error: Error message
        retry: Whether to schedule automatic retry

    Returns:
        New task_id if retry scheduled, None otherwise
    """
    meta_key = f"{META_KEY_PREFIX}{task_id}"
    client = get_redis_client()

    meta = client.hgetall(meta_key)
    if not meta:
        logger.warning(f"Task {task_id} metadata not found")
        return None

    retry_count = int(meta.get("retry_count", "0"))
    max_retries = int(meta.get("max_retries", "3"))
    payload_json = meta.get("payload")

    if retry and payload_json and retry_count < max_retries:
        new_retry_count = retry_count + 1
        delay_seconds = min(300, 2 ** new_retry_count)  # Max 5 minutes

        logger.info(
            f"Task {task_id} failed (attempt {retry_count + 1}/{max_retries + 1}), "
            f"scheduling retry in {delay_seconds}s: {error}"
        )
        client.hset(meta_key, mapping={
            "status": "retrying",
            "error": error,
            "retry_scheduled_at": _now(),
        })
        client.srem(PROCESSING_SET_KEY, task_id)

        return enqueue_task(
            task_type=meta.get("task_type"),
            payload=json.loads(payload_json),
            retry_count=new_retry_count,
            max_retries=max_retries,
            retry_after=datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
        )

    client.hset(meta_key, mapping={"status": "failed", "error": error, "failed_at": _now()})
    client.srem(PROCESSING_SET_KEY, task_id)
    logger.warning(f"Task {task_id} failed permanently after {retry_count + 1} attempts: {error}")
    return None


def get_processing_tasks() -> list[str]:
    return list(get_redis_client().smembers(PROCESSING_SET_KEY))


def cleanup_stale_tasks(timeout_seconds: int = 3600) -> int:
    """Fail tasks that have been in processing state too long (likely a crashed worker)

    Returns:
        Number of tasks cleaned up
    """
    client = get_redis_client()
    cleaned = 0

    for task_id in get_processing_tasks():
        meta_key = f"{META_KEY_PREFIX}{task_id}"
        started_at_str = client.hget(meta_key, "started_at")
        if not started_at_str:
            client.srem(PROCESSING_SET_KEY, task_id)
            cleaned += 1
            continue

        try:
            started_at = datetime.fromisoformat(started_at_str.replace('Z', '+00:00'))
        except (ValueError, TypeError) as e:
            logger.warning(f"Error parsing started_at for task {task_id}: {e}")
            client.srem(PROCESSING_SET_KEY, task_id)
            cleaned += 1
            continue

        elapsed = (datetime.now(timezone.utc) - started_at).total_seconds()
        if elapsed > timeout_seconds:
            logger.warning(
                f"Cleaning up stale task {task_id} "
                f"(processing for {elapsed:.0f}s, timeout={timeout_seconds}s)"
            )
            client.srem(PROCESSING_SET_KEY, task_id)
            client.hset(meta_key, mapping={
                "status": "failed",
                "error": f"Task timeout after {elapsed:.0f} seconds"
            })
            cleaned += 1

    return cleaned
