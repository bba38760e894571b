"""
Dependency wiring for the FastAPI app and the scheduler.
"""

from __future__ import annotations

from newswire.config import Settings, get_settings
from newswire.db import DbClient, InMemoryDbClient, PostgresDbClient
from newswire.publisher import Publisher, PublisherConfig, RabbitMqPublisher

_db_client: DbClient | None = None
_publisher: Publisher | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def publisher_config(settings: Settings) -> PublisherConfig:
    return PublisherConfig(
        base_url=settings.rabbitmq_url,
        username=settings.rabbitmq_user,
        password=settings.rabbitmq_password,
        vhost=settings.rabbitmq_vhost,
        exchange=settings.rabbitmq_exchange,
        timeout_seconds=settings.rabbitmq_timeout_seconds,
        dry_run=settings.skip_jobs,
    )


def get_publisher() -> Publisher:
    """
    Return a singleton publisher for dispatching work items to the broker.
    """
    global _publisher
    if _publisher:
        return _publisher

    _publisher = RabbitMqPublisher(publisher_config(get_settings()))
    return _publisher
