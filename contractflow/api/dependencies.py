"""
FastAPI dependencies. Injected into route handlers.

Without REDIS_URL the rate-limit counters and the queue are process-local,
which only works when the worker runs inside the API process.
"""
import logging
from functools import lru_cache

import redis
from fastapi import Depends, Header
from sqlalchemy.orm import Session

from contractflow.config import Settings, get_settings
from contractflow.database import get_db
from contractflow.errors import UnauthorizedError
from contractflow.models.enums import MembershipRole
from contractflow.queue.base import Queue
from contractflow.queue.memory import InMemoryQueue
from contractflow.queue.redis_queue import RedisQueue
from contractflow.services.permissions import Actor
from contractflow.services.rate_limit import InMemoryCounterStore, RateLimiter
from contractflow.services.workflow import DocumentWorkflow

logger = logging.getLogger(__name__)


@lru_cache
def get_redis_client(url: str) -> redis.Redis:
    return redis.Redis.from_url(url, decode_responses=True, socket_connect_timeout=5)


def build_queue(settings: Settings) -> Queue:
    if settings.redis_url:
        return RedisQueue(
            get_redis_client(settings.redis_url),
            visibility_timeout=settings.queue_visibility_timeout_seconds,
        )
    logger.warning("REDIS_URL not set; using in-process queue")
    return InMemoryQueue()


def build_rate_limiter(settings: Settings) -> RateLimiter:
    if settings.redis_url:
        return RateLimiter(get_redis_client(settings.redis_url))
    return RateLimiter(InMemoryCounterStore())


@lru_cache
def get_queue() -> Queue:
    return build_queue(get_settings())


@lru_cache
def get_rate_limiter() -> RateLimiter:
    return build_rate_limiter(get_settings())


def get_actor(
    x_user_id: str = Header(default=""),
    x_organization_id: str = Header(default=""),
    x_user_role: str = Header(default=""),
) -> Actor:
    """Identity is asserted by the authentication layer in front of this service."""
    if not x_user_id or not x_organization_id:
        raise UnauthorizedError("Missing caller identity.")
    try:
        role = MembershipRole(x_user_role.upper())
    except ValueError:
        raise UnauthorizedError("Missing or unknown caller role.")
    return Actor(user_id=x_user_id, organization_id=x_organization_id, role=role)


def get_workflow(
    db: Session = Depends(get_db),
    queue: Queue = Depends(get_queue),
    limiter: RateLimiter = Depends(get_rate_limiter),
    settings: Settings = Depends(get_settings),
    actor: Actor = Depends(get_actor),
) -> DocumentWorkflow:
    return DocumentWorkflow(db, queue, limiter, settings, actor)
