"""
Scheduled fan-out of work items to the broker.

Two triggers exist: the daily feed refresh and the hourly keyword search.
Each tick walks its items sequentially; a failed publish is recorded in the
tick report and the loop moves on to the next item. Nothing is retried
within a tick.
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass, field
from typing import Callable, Optional

from newswire.config import get_settings
from sqlalchemy.exc import SQLAlchemyError

from newswire.db import DbClient, StoreError
from newswire.dependencies import get_db_client, get_publisher
from newswire.publisher import PublishError, Publisher

logger = logging.getLogger(__name__)

STORE_ERRORS = (StoreError, SQLAlchemyError)

REFRESH_FEEDS_CRON = "0 9 * * *"
SEARCH_NEWS_CRON = "0 * * * *"
DEFAULT_SEARCH_BATCH_SIZE = 5


@dataclass
class PublishFailure:
    queue: str
    item_id: int
    kind: str
    message: str

    def as_dict(self) -> dict:
        return {
            "queue": self.queue,
            "item_id": self.item_id,
            "kind": self.kind,
            "message": self.message,
        }


@dataclass
class TickReport:
    schedule: str
    published: int = 0
    failures: list[PublishFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def record_failure(self, queue: str, item_id: int, error: Exception) -> None:
        kind = getattr(error, "kind", "store")
        self.failures.append(
            PublishFailure(queue=queue, item_id=item_id, kind=kind, message=str(error))
        )

    def as_dict(self) -> dict:
        return {
            "schedule": self.schedule,
            "published": self.published,
            "failures": [failure.as_dict() for failure in self.failures],
        }


def search_news(
    db: DbClient,
    publisher: Publisher,
    batch_size: int = DEFAULT_SEARCH_BATCH_SIZE,
) -> TickReport:
    """
    Publish a searcher job for the least-searched keywords of every project.

    The counter of a keyword is only incremented after its publish succeeded.
    """
    report = TickReport(schedule=SEARCH_NEWS_CRON)
    for project in db.list_projects():
        try:
            keywords = db.select_top_for_search(project.id, batch_size)
        except STORE_ERRORS as exc:
            logger.exception("Selecting keywords for project %s failed", project.id)
            report.record_failure("searcher", project.id, exc)
            continue
        for keyword in keywords:
            message = {
                "project_id": project.id,
                "topic": project.topic,
                "keyword_id": keyword.id,
                "keyword": keyword.content,
                "searches": keyword.searches,
            }
            try:
                publisher.publish("searcher", message)
            except PublishError as exc:
                logger.warning(
                    "Search job for keyword %s (project %s) failed: %s",
                    keyword.id,
                    project.id,
                    exc,
                )
                report.record_failure("searcher", keyword.id, exc)
                continue
            report.published += 1
            try:
                db.increment_keyword_searches(keyword.id)
            except STORE_ERRORS as exc:
                logger.warning("Counter update for keyword %s failed: %s", keyword.id, exc)
                report.record_failure("searcher", keyword.id, exc)
    logger.info(
        "search_news published %d jobs, %d failures",
        report.published,
        len(report.failures),
    )
    return report


def refresh_feeds(db: DbClient, publisher: Publisher) -> TickReport:
    """Publish a refresh job for every feed with its project's keywords."""
    report = TickReport(schedule=REFRESH_FEEDS_CRON)
    keywords_by_project: dict[int, list[str]] = {}
    for source in db.list_rss_sources():
        if source.project_id not in keywords_by_project:
            try:
                keywords = db.list_keywords(source.project_id)
            except STORE_ERRORS as exc:
                logger.warning("Keywords for feed %s unavailable: %s", source.id, exc)
                report.record_failure("rss_atom", source.id, exc)
                continue
            keywords_by_project[source.project_id] = [keyword.content for keyword in keywords]
        message = {
            "rss_atom_id": source.id,
            "feed_url": source.url,
            "keywords": keywords_by_project[source.project_id],
        }
        try:
            publisher.publish("rss_atom", message)
        except PublishError as exc:
            logger.warning("Refresh job for feed %s failed: %s", source.id, exc)
            report.record_failure("rss_atom", source.id, exc)
            continue
        report.published += 1
    logger.info(
        "refresh_feeds published %d jobs, %d failures",
        report.published,
        len(report.failures),
    )
    return report


def _search_news_task(db: DbClient, publisher: Publisher) -> TickReport:
    return search_news(db, publisher, batch_size=get_settings().search_batch_size)


SCHEDULES: dict[str, Callable[[DbClient, Publisher], TickReport]] = {
    REFRESH_FEEDS_CRON: refresh_feeds,
    SEARCH_NEWS_CRON: _search_news_task,
}


def handle_schedule(
    cron: str,
    *,
    db: Optional[DbClient] = None,
    publisher: Optional[Publisher] = None,
) -> Optional[TickReport]:
    """
    Run the task bound to a schedule identifier. Unknown identifiers are ignored.
    """
    task = SCHEDULES.get(cron)
    if task is None:
        logger.warning("No scheduler found for schedule %r", cron)
        return None
    return task(db or get_db_client(), publisher or get_publisher())


def main() -> int:
    parser = argparse.ArgumentParser(description="Run a scheduled newswire tick")
    parser.add_argument(
        "-c",
        "--cron",
        type=str,
        required=True,
        help=f"Schedule identifier ({REFRESH_FEEDS_CRON!r} or {SEARCH_NEWS_CRON!r})",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    report = handle_schedule(args.cron)
    if report is None:
        return 0
    for failure in report.failures:
        logger.error(
            "%s item %s failed (%s): %s",
            failure.queue,
            failure.item_id,
            failure.kind,
            failure.message,
        )
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
