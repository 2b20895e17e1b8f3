"""
Auto Training

Retrains models in the background when applications are decided.

Every approved/rejected decision schedules a retrain of that scholarship's
model on a worker thread, and every Nth decision overall also refreshes
the global model. The caller never waits for training.
"""

import logging
import threading
import time
from collections import Counter, deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import List, Optional

from .constants import (
    GLOBAL_SCOPE,
    GLOBAL_RETRAIN_INTERVAL,
    MAX_TRAINING_LOG_ENTRIES,
    DEFAULT_TRAINING_LOG_LIMIT,
    TRAINING_DECISION_STATUSES,
    TriggerType,
    TrainingEventType,
)
from .contracts import TrainingEvent, TrainingStatus, TrainingResult, utcnow
from .model_store import scholarship_scope, scope_scholarship_id
from .trainer import ModelTrainer

logger = logging.getLogger(__name__)

REASON_INSUFFICIENT_DATA = "insufficient_data"
REASON_CONCURRENT_LOCK = "concurrent_lock"


class AutoTrainingService:
    def __init__(
        self,
        trainer: ModelTrainer,
        global_retrain_interval: int = GLOBAL_RETRAIN_INTERVAL,
        max_workers: int = 2,
        enabled: bool = True,
    ):
        if global_retrain_interval < 1:
            raise ValueError(f"global_retrain_interval must be at least 1, got {global_retrain_interval}")
        self.trainer = trainer
        self.global_retrain_interval = global_retrain_interval
        self.enabled = enabled
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="auto-training")
        self._counter_lock = threading.Lock()
        self._global_counter = 0
        self._log_lock = threading.Lock()
        self._log = deque(maxlen=MAX_TRAINING_LOG_ENTRIES)

    # -------------------------------------------------------------------------
    # Triggers
    # -------------------------------------------------------------------------

    def on_decision(
        self,
        application_id: Optional[str],
        scholarship_id: Optional[str],
        new_status: str,
        actor_id: Optional[str] = None,
    ) -> Optional[Future]:
        """
        Schedule retraining after an application decision.

        Only approved/rejected decisions count. Returns the Future of the
        background run (callers normally ignore it), or None when nothing
        was scheduled.
        """
        status = (new_status or "").strip().lower()
        if not self.enabled or status not in TRAINING_DECISION_STATUSES:
            return None

        with self._counter_lock:
            self._global_counter += 1
            refresh_global = self._global_counter % self.global_retrain_interval == 0

        logger.info(
            f"📬 Decision '{status}' on application {application_id} "
            f"(scholarship {scholarship_id}); global refresh={refresh_global}"
        )
        try:
            return self._executor.submit(
                self._run_decision, application_id, scholarship_id, actor_id, refresh_global
            )
        except RuntimeError as e:
            # Raised once the pool is shut down; the decision itself stands
            logger.error(f"❌ Could not schedule training for application {application_id}: {e}")
            scope = scholarship_scope(scholarship_id) if scholarship_id else GLOBAL_SCOPE
            self._append(TrainingEvent(
                type=TrainingEventType.ERROR,
                scope=scope,
                scholarship_id=scholarship_id,
                application_id=application_id,
                trigger_type=TriggerType.AUTO_STATUS_CHANGE,
                error=str(e),
            ))
            return None

    def train_now(
        self,
        scope: str = GLOBAL_SCOPE,
        triggered_by: Optional[str] = None,
    ) -> TrainingResult:
        """Manual, synchronous training run; recorded in the training log."""
        start_time = time.perf_counter()
        result = self.trainer.train_model(scope, trigger_type=TriggerType.MANUAL, triggered_by=triggered_by)
        self._append(self._event_for(
            result, scope, TriggerType.MANUAL, None, start_time,
        ))
        return result

    def _run_decision(
        self,
        application_id: Optional[str],
        scholarship_id: Optional[str],
        actor_id: Optional[str],
        refresh_global: bool,
    ) -> List[TrainingEvent]:
        events = []
        if scholarship_id:
            events.append(self._train(
                scholarship_scope(scholarship_id), TriggerType.AUTO_STATUS_CHANGE, application_id, actor_id,
            ))
        if refresh_global:
            events.append(self._train(
                GLOBAL_SCOPE, TriggerType.AUTO_GLOBAL_REFRESH, application_id, actor_id,
            ))
        return events

    def _train(
        self,
        scope: str,
        trigger_type: TriggerType,
        application_id: Optional[str],
        actor_id: Optional[str],
    ) -> TrainingEvent:
        start_time = time.perf_counter()
        try:
            result = self.trainer.train_model(
                scope,
                trigger_type=trigger_type,
                triggered_by=actor_id,
                trigger_application_id=application_id,
            )
            event = self._event_for(result, scope, trigger_type, application_id, start_time)
        except Exception as e:
            # Background runs have no caller to raise to; record the failure instead.
            logger.exception(f"❌ Auto-training for {scope} failed")
            event = TrainingEvent(
                type=TrainingEventType.ERROR,
                scope=scope,
                scholarship_id=scope_scholarship_id(scope),
                application_id=application_id,
                trigger_type=trigger_type,
                elapsed_ms=(time.perf_counter() - start_time) * 1000,
                error=str(e),
            )
        self._append(event)
        return event

    def _event_for(
        self,
        result: TrainingResult,
        scope: str,
        trigger_type: TriggerType,
        application_id: Optional[str],
        start_time: float,
    ) -> TrainingEvent:
        common = dict(
            scope=scope,
            scholarship_id=scope_scholarship_id(scope),
            application_id=application_id,
            trigger_type=trigger_type,
            elapsed_ms=(time.perf_counter() - start_time) * 1000,
        )
        if result.success and result.model is not None:
            return TrainingEvent(
                type=TrainingEventType.SUCCESS,
                model_id=result.model.id,
                accuracy=result.model.metrics.accuracy if result.model.metrics else None,
                **common,
            )
        if result.skipped:
            return TrainingEvent(type=TrainingEventType.SKIPPED, reason=REASON_CONCURRENT_LOCK, **common)
        if result.samples_available < result.samples_required:
            return TrainingEvent(type=TrainingEventType.SKIPPED, reason=REASON_INSUFFICIENT_DATA, **common)
        return TrainingEvent(type=TrainingEventType.ERROR, error=result.message, **common)

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def _append(self, event: TrainingEvent) -> None:
        with self._log_lock:
            self._log.append(event)
        logger.info(f"📝 Training event {event.type} for {event.scope}" + (f" ({event.reason})" if event.reason else ""))

    @property
    def global_decision_counter(self) -> int:
        with self._counter_lock:
            return self._global_counter

    def get_log(self, limit: int = DEFAULT_TRAINING_LOG_LIMIT) -> List[TrainingEvent]:
        """Most recent events first."""
        with self._log_lock:
            events = list(self._log)
        events.reverse()
        return events[:max(0, limit)]

    def get_status(self) -> TrainingStatus:
        counter = self.global_decision_counter
        with self._log_lock:
            events = list(self._log)

        today = utcnow().date()
        counts = Counter(e.type for e in events if e.timestamp.date() == today)
        config = self.trainer.config
        return TrainingStatus(
            enabled=self.enabled,
            config={
                "global_retrain_interval": self.global_retrain_interval,
                "min_samples": config.min_samples,
                "learning_rate": config.learning_rate,
                "l2": config.l2,
                "max_iterations": config.max_iterations,
                "convergence_threshold": config.convergence_threshold,
            },
            global_decision_counter=counter,
            decisions_until_global_retrain=self.global_retrain_interval - counter % self.global_retrain_interval,
            active_locks=self.trainer.locks.active(),
            today={
                "success": counts.get(TrainingEventType.SUCCESS.value, 0),
                "skipped": counts.get(TrainingEventType.SKIPPED.value, 0),
                "error": counts.get(TrainingEventType.ERROR.value, 0),
            },
            last_event=events[-1] if events else None,
        )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
