# ride_dispatch/infra/__init__.py
"""
Инфраструктурный слой: PostgreSQL, Redis, RabbitMQ.
"""

from ride_dispatch.infra.database import DatabaseManager, get_db, init_db, close_db
from ride_dispatch.infra.redis_client import RedisClient, get_redis, init_redis, close_redis
from ride_dispatch.infra.event_bus import EventBus, DomainEvent, EventTypes, get_event_bus, init_event_bus, close_event_bus

__all__ = [
    "DatabaseManager", "get_db", "init_db", "close_db",
    "RedisClient", "get_redis", "init_redis", "close_redis",
    "EventBus", "DomainEvent", "EventTypes", "get_event_bus", "init_event_bus", "close_event_bus",
]
