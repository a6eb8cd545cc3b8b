"""
Metric-delta alerts.

Compares each page's current 30-day clicks and impressions with the
previous window and records a ``drop`` alert at -30% or worse and a
``rise`` alert at +50% or better.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger
from sqlalchemy.orm import Session

from content_audit.config.settings import ALERTS
from content_audit.database.models import Alert, AuditPage, AuditProject, SessionLocal
from content_audit.errors import NotFoundError
from content_audit.utils.helpers import percentage_change

_METRICS = (
    ("clicks", "Clicks", "prev_clicks_30d", "clicks_30d"),
    ("impressions", "Impressions", "prev_impressions_30d", "impressions_30d"),
)


@dataclass
class MetricAlert:
    page_id: int
    alert_type: str  # drop, rise
    metric: str
    change_pct: float
    previous: float
    current: float
    message: str

    @property
    def severity(self) -> str:
        return "warning" if self.alert_type == "drop" else "info"


class AlertEvaluator:
    """Evaluate metric changes and persist alerts."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        drop_threshold: float = ALERTS["drop_threshold_pct"],
        rise_threshold: float = ALERTS["rise_threshold_pct"],
    ) -> None:
        self.session_factory = session_factory
        self.drop_threshold = drop_threshold
        self.rise_threshold = rise_threshold

    def check_metric(
        self,
        page_id: int,
        metric: str,
        label: str,
        previous: Optional[float],
        current: Optional[float],
    ) -> Optional[MetricAlert]:
        if previous is None or current is None:
            return None

        change = percentage_change(previous, current)
        if change <= self.drop_threshold:
            return MetricAlert(
                page_id=page_id,
                alert_type="drop",
                metric=metric,
                change_pct=round(change, 1),
                previous=previous,
                current=current,
                message=f"{label} dropped by {abs(change):.1f}% ({previous} → {current})",
            )
        if change >= self.rise_threshold:
            return MetricAlert(
                page_id=page_id,
                alert_type="rise",
                metric=metric,
                change_pct=round(change, 1),
                previous=previous,
                current=current,
                message=f"{label} increased by {change:.1f}% ({previous} → {current})",
            )
        return None

    def evaluate_metrics(self, page: AuditPage) -> list[MetricAlert]:
        alerts = []
        for metric, label, prev_attr, current_attr in _METRICS:
            alert = self.check_metric(
                page.id, metric, label, getattr(page, prev_attr), getattr(page, current_attr)
            )
            if alert is not None:
                alerts.append(alert)
        return alerts

    def evaluate_page(self, page_id: int) -> list[MetricAlert]:
        db = self.session_factory()
        try:
            page = db.get(AuditPage, page_id)
            if page is None:
                raise NotFoundError(f"Page not found: {page_id}")
            alerts = self._evaluate_and_store(db, page)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info("Evaluated page {}: {} alerts created", page_id, len(alerts))
        return alerts

    def evaluate_project(self, project_id: int) -> dict:
        db = self.session_factory()
        try:
            project = db.get(AuditProject, project_id)
            if project is None:
                raise NotFoundError(f"Project not found: {project_id}")

            pages = db.query(AuditPage).filter(AuditPage.project_id == project_id).all()
            logger.info("Evaluating {} pages for project {}", len(pages), project_id)

            total = 0
            for page in pages:
                total += len(self._evaluate_and_store(db, page))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info("Evaluated project {}: {} alerts created", project_id, total)
        return {"pages_evaluated": len(pages), "alerts": total}

    def _evaluate_and_store(self, db: Session, page: AuditPage) -> list[MetricAlert]:
        created = []
        for alert in self.evaluate_metrics(page):
            if self._already_open(db, alert):
                continue
            db.add(Alert(
                page_id=alert.page_id,
                alert_type=alert.alert_type,
                severity=alert.severity,
                title=f"{alert.metric.capitalize()} {alert.alert_type} on {page.url}",
                message=alert.message,
                data={
                    "metric": alert.metric,
                    "previous": alert.previous,
                    "current": alert.current,
                    "change_pct": alert.change_pct,
                },
            ))
            created.append(alert)
        return created

    @staticmethod
    def _already_open(db: Session, alert: MetricAlert) -> bool:
        """An unresolved alert for the same metric snapshot already exists."""
        open_alerts = (
            db.query(Alert)
            .filter(
                Alert.page_id == alert.page_id,
                Alert.alert_type == alert.alert_type,
                Alert.is_resolved.is_(False),
            )
            .all()
        )
        for existing in open_alerts:
            data = existing.data or {}
            if (
                data.get("metric") == alert.metric
                and data.get("previous") == alert.previous
                and data.get("current") == alert.current
            ):
                return True
        return False
