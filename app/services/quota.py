"""Monthly call quota for the official places API."""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.models import QuotaUsage

logger = logging.getLogger(__name__)


class QuotaGovernor:
    """Counts calls per calendar month and refuses once the limit is reached.

    The counter row is keyed by (api_name, "YYYY-MM"), so a new month starts
    from zero without any reset job. Increments are a single conditional
    UPDATE, which keeps concurrent callers from overshooting the limit.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        monthly_limit: int,
        api_name: str = "google_places",
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._session_factory = session_factory
        self.monthly_limit = monthly_limit
        self.api_name = api_name
        self._now = now

    def _month(self) -> str:
        return self._now().strftime("%Y-%m")

    def _current_count(self, db: Session, month: str) -> int | None:
        return db.execute(
            select(QuotaUsage.call_count).where(
                QuotaUsage.api_name == self.api_name,
                QuotaUsage.month == month,
            )
        ).scalar_one_or_none()

    def can_consume(self) -> bool:
        """Advisory check; answers False when the counter cannot be read."""
        try:
            with self._session_factory() as db:
                count = self._current_count(db, self._month())
        except SQLAlchemyError as exc:
            logger.error("Quota check failed for %s: %s", self.api_name, exc)
            return False
        return (count or 0) < self.monthly_limit

    def consume(self) -> bool:
        """Atomically take one call from this month's budget.

        Returns False when the budget is exhausted or the database fails.
        """
        month = self._month()
        for _ in range(2):
            try:
                with self._session_factory() as db:
                    now = self._now()
                    result = db.execute(
                        update(QuotaUsage)
                        .where(
                            QuotaUsage.api_name == self.api_name,
                            QuotaUsage.month == month,
                            QuotaUsage.call_count < self.monthly_limit,
                        )
                        .values(
                            call_count=QuotaUsage.call_count + 1,
                            monthly_limit=self.monthly_limit,
                            last_used=now,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 1:
                        db.commit()
                        return True
                    db.rollback()

                    if self._current_count(db, month) is not None or self.monthly_limit <= 0:
                        logger.warning("%s monthly quota exhausted (%s)", self.api_name, month)
                        return False

                    db.add(
                        QuotaUsage(
                            api_name=self.api_name,
                            month=month,
                            call_count=1,
                            monthly_limit=self.monthly_limit,
                            last_used=now,
                        )
                    )
                    db.commit()
                    return True
            except IntegrityError:
                # Another caller created this month's row first; retry the UPDATE.
                continue
            except SQLAlchemyError as exc:
                logger.error("Quota increment failed for %s: %s", self.api_name, exc)
                return False
        return False

    def get_stats(self) -> dict[str, int | str]:
        month = self._month()
        with self._session_factory() as db:
            used = self._current_count(db, month) or 0
        return {
            "api_name": self.api_name,
            "month": month,
            "used": used,
            "limit": self.monthly_limit,
            "remaining": max(self.monthly_limit - used, 0),
        }
