"""Optimizer History - SQLAlchemy persistence of metric samples and optimization events"""

import json
import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import Boolean, Column, Float, Index, Integer, String, Text, create_engine, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .exceptions import HistoryError
from .models import MetricSample, OptimizationEvent

logger = logging.getLogger(__name__)


# ===============================================================================
# DATABASE TABLE DEFINITIONS
# ===============================================================================

Base = declarative_base()


class PerformanceMetricRow(Base):
    """One persisted metric sample"""
    __tablename__ = 'performance_metrics'

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(Float, nullable=False, index=True)
    cpu_percent = Column(Float, nullable=False, default=0.0)
    memory_percent = Column(Float, nullable=False, default=0.0)
    response_time_ms = Column(Float, nullable=False, default=0.0)
    throughput_per_sec = Column(Float, nullable=False, default=0.0)
    error_rate_percent = Column(Float, nullable=False, default=0.0)


class OptimizationEventRow(Base):
    """One persisted optimization action"""
    __tablename__ = 'optimization_events'

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(Float, nullable=False, index=True)
    optimization_type = Column(String(50), nullable=False)
    trigger_reason = Column(String(255), nullable=False)
    impact = Column(String(255), nullable=True)
    success = Column(Boolean, nullable=False, default=True)
    details = Column(Text, nullable=True)  # JSON string
    error = Column(Text, nullable=True)

    __table_args__ = (
        Index('idx_event_type_time', 'optimization_type', 'timestamp'),
    )


# ===============================================================================
# HISTORY MANAGER
# ===============================================================================

class OptimizationHistory:
    """Records samples and optimization events; write failures are logged, not raised"""

    def __init__(self, db_url: str = 'sqlite:///procopt_history.db', clock: Callable[[], float] = time.time):
        self.db_url = db_url
        self.clock = clock
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._lock = threading.Lock()

        try:
            self.engine = create_engine(db_url, **self._get_engine_config(db_url))
            self.session_factory = sessionmaker(bind=self.engine)
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise HistoryError(f"Failed to initialize optimizer history database: {e}")

        self.logger.info(f"Initialized optimizer history: {db_url.split('://')[0]}")

    @staticmethod
    def _get_engine_config(db_url: str) -> Dict[str, Any]:
        if db_url.startswith('sqlite:'):
            return {
                'poolclass': StaticPool,
                'connect_args': {'check_same_thread': False},
                'echo': False
            }
        return {'pool_pre_ping': True, 'echo': False}

    @contextmanager
    def get_session(self):
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def record_sample(self, sample: MetricSample) -> bool:
        try:
            with self._lock, self.get_session() as session:
                session.add(PerformanceMetricRow(**sample.to_dict()))
            return True
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to record metric sample: {e}")
            return False

    def record_event(self, event: OptimizationEvent) -> bool:
        try:
            with self._lock, self.get_session() as session:
                session.add(OptimizationEventRow(
                    timestamp=event.timestamp,
                    optimization_type=event.optimization_type.value,
                    trigger_reason=event.trigger_reason,
                    impact=event.impact,
                    success=event.success,
                    details=json.dumps(event.details, default=str),
                    error=event.error
                ))
            return True
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to record optimization event: {e}")
            return False

    def recent_events(self, limit: int = 20) -> List[Dict[str, Any]]:
        try:
            with self.get_session() as session:
                rows = (session.query(OptimizationEventRow)
                        .order_by(OptimizationEventRow.timestamp.desc(), OptimizationEventRow.id.desc())
                        .limit(limit)
                        .all())
                return [
                    {
                        'type': row.optimization_type,
                        'trigger_reason': row.trigger_reason,
                        'impact': row.impact,
                        'success': row.success,
                        'details': json.loads(row.details) if row.details else {},
                        'error': row.error,
                        'timestamp': row.timestamp,
                    }
                    for row in rows
                ]
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to load recent optimization events: {e}")
            return []

    def statistics(self, window_seconds: float = 3600.0) -> Dict[str, Any]:
        """Totals over all events plus average CPU/memory over the recent window"""
        try:
            with self.get_session() as session:
                total = session.query(OptimizationEventRow).count()
                successful = (session.query(OptimizationEventRow)
                              .filter(OptimizationEventRow.success.is_(True))
                              .count())

                cutoff = self.clock() - window_seconds
                avg_cpu, avg_memory, samples = (
                    session.query(
                        func.avg(PerformanceMetricRow.cpu_percent),
                        func.avg(PerformanceMetricRow.memory_percent),
                        func.count(PerformanceMetricRow.id)
                    )
                    .filter(PerformanceMetricRow.timestamp >= cutoff)
                    .one()
                )

                return {
                    'total_optimizations': total,
                    'successful_optimizations': successful,
                    'success_rate': (successful / total * 100) if total > 0 else 0.0,
                    'avg_cpu_percent': float(avg_cpu or 0.0),
                    'avg_memory_percent': float(avg_memory or 0.0),
                    'samples_in_window': samples,
                }
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to compute optimizer history statistics: {e}")
            return {}

    def close(self):
        self.engine.dispose()
