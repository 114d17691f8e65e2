"""Task Scheduler with Priority Queues and Load-Aware Admission

Scheduling system that:
- Keeps three FIFO queues (high, medium, low) dispatched in strict priority order
- Admits work only while CPU, memory and in-flight capacity allow it and a worker is idle
- Executes handlers on a thread pool and reports every outcome by event
- Signals load shedding when queued plus in-flight work nears capacity
- Supports lightweight-first dispatch, redundant retries and a circuit breaker
"""

import logging
import threading
import time
import uuid
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional, Union

from ...optimizer_core.events import EventBus, LOAD_SHEDDING_REQUESTED, TASK_COMPLETED
from ...optimizer_core.exceptions import CircuitOpenError
from ...optimizer_core.metrics import MetricsCollector
from ...optimizer_core.models import TaskCompletion, TaskPriority
from .circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

TaskHandler = Callable[[Any], Any]


@dataclass
class Task:
    """Unit of work; the handler is called with the payload as its only argument"""
    task_id: str
    priority: TaskPriority
    handler: TaskHandler
    payload: Any = None
    kind: Optional[str] = None
    cpu_intensive: bool = False
    enqueued_at: float = 0.0


class TaskScheduler:
    """Priority scheduler gating execution against live load"""

    def __init__(self,
                 metrics: Optional[MetricsCollector] = None,
                 max_capacity: int = 1000,
                 worker_threads: int = 32,
                 kind_priorities: Optional[Dict[str, TaskPriority]] = None,
                 admission_cpu_percent: float = 85.0,
                 admission_memory_percent: float = 90.0,
                 overload_ratio: float = 0.8,
                 event_bus: Optional[EventBus] = None,
                 circuit_breaker: Optional[CircuitBreaker] = None,
                 on_overload: Optional[Callable[[], Any]] = None,
                 clock: Callable[[], float] = time.time):
        self.metrics = metrics
        self.max_capacity = max_capacity
        self.worker_threads = worker_threads
        self.kind_priorities = dict(kind_priorities or {})
        self.admission_cpu_percent = admission_cpu_percent
        self.admission_memory_percent = admission_memory_percent
        self.overload_ratio = overload_ratio
        self.event_bus = event_bus
        self.circuit_breaker = circuit_breaker or CircuitBreaker(clock=clock)
        self.on_overload = on_overload
        self.clock = clock

        self.queues: Dict[TaskPriority, Deque[Task]] = {
            priority: deque() for priority in TaskPriority.dispatch_order()
        }
        self.in_flight: Dict[str, Task] = {}

        # Modes toggled by the optimization controller
        self.lightweight_first = False
        self.redundancy_enabled = False

        self.executor = ThreadPoolExecutor(max_workers=worker_threads, thread_name_prefix="procopt-task")
        self._lock = threading.RLock()
        self._overload_pending = threading.Event()
        self._shutdown = False

        self.scheduling_stats = {
            'total_enqueued': 0,
            'total_dispatched': 0,
            'total_completed': 0,
            'total_failed': 0,
            'total_retried': 0,
            'short_circuited': 0,
            'overload_signals': 0,
            'avg_wait_ms': 0.0,
        }

        logger.info(f"TaskScheduler initialized with max {max_capacity} in-flight tasks, {worker_threads} workers")

    # ===============================================================================
    # ENQUEUE
    # ===============================================================================

    def classify(self, priority: Optional[Union[TaskPriority, str]] = None, kind: Optional[str] = None) -> TaskPriority:
        """Explicit priority wins, then the kind mapping, then MEDIUM"""
        if priority is not None:
            return priority if isinstance(priority, TaskPriority) else TaskPriority(priority)
        if kind is not None and kind in self.kind_priorities:
            return self.kind_priorities[kind]
        return TaskPriority.MEDIUM

    def enqueue(self,
                handler: TaskHandler,
                payload: Any = None,
                priority: Optional[Union[TaskPriority, str]] = None,
                kind: Optional[str] = None,
                cpu_intensive: bool = False,
                task_id: Optional[str] = None) -> str:
        """Queue a task for dispatch and return its id"""
        task = Task(
            task_id=task_id or f"task_{uuid.uuid4().hex[:12]}",
            priority=self.classify(priority, kind),
            handler=handler,
            payload=payload,
            kind=kind,
            cpu_intensive=cpu_intensive,
            enqueued_at=self.clock()
        )

        with self._lock:
            self.queues[task.priority].append(task)
            self.scheduling_stats['total_enqueued'] += 1

        logger.debug(f"Enqueued {task.task_id} ({task.priority.value}, kind={kind})")
        self._check_overload()
        return task.task_id

    # ===============================================================================
    # ADMISSION AND DISPATCH
    # ===============================================================================

    @property
    def queued(self) -> int:
        with self._lock:
            return sum(len(queue) for queue in self.queues.values())

    @property
    def current_load(self) -> int:
        """Queued plus in-flight tasks"""
        with self._lock:
            return self.queued + len(self.in_flight)

    @property
    def dispatch_limit(self) -> int:
        """Most tasks in flight at once; only idle workers receive tasks"""
        return min(self.max_capacity, self.worker_threads)

    def can_admit_more(self) -> bool:
        sample = self.metrics.latest() if self.metrics else None
        cpu = sample.cpu_percent if sample else 0.0
        memory = sample.memory_percent if sample else 0.0

        with self._lock:
            in_flight = len(self.in_flight)

        return (cpu < self.admission_cpu_percent and
                memory < self.admission_memory_percent and
                in_flight < self.dispatch_limit)

    def _pop_next(self) -> Optional[Task]:
        for priority in TaskPriority.dispatch_order():
            queue = self.queues[priority]
            if not queue:
                continue

            if self.lightweight_first:
                for task in queue:
                    if not task.cpu_intensive:
                        queue.remove(task)
                        return task

            return queue.popleft()
        return None

    def dispatch_once(self) -> List[str]:
        """Submit admissible tasks in strict priority order; returns dispatched ids"""
        dispatched = []

        while not self._shutdown and self.can_admit_more():
            with self._lock:
                task = self._pop_next()
                if task is None:
                    break
                self.in_flight[task.task_id] = task
                self.scheduling_stats['total_dispatched'] += 1

            try:
                self.executor.submit(self._execute, task)
            except RuntimeError as e:
                logger.error(f"Worker pool rejected {task.task_id}: {e}")
                with self._lock:
                    self.in_flight.pop(task.task_id, None)
                    self.queues[task.priority].appendleft(task)
                break

            dispatched.append(task.task_id)

        if dispatched:
            logger.debug(f"Dispatched {len(dispatched)} tasks")
        self._check_overload()
        return dispatched

    # ===============================================================================
    # EXECUTION
    # ===============================================================================

    def _execute(self, task: Task):
        started = self.clock()
        wait_ms = max(0.0, (started - task.enqueued_at) * 1000.0)
        max_attempts = 2 if self.redundancy_enabled else 1

        attempts = 0
        success = False
        result = None
        error: Optional[BaseException] = None

        try:
            while attempts < max_attempts:
                if not self.circuit_breaker.can_execute():
                    error = CircuitOpenError(f"Circuit breaker open, task {task.task_id} not executed")
                    with self._lock:
                        self.scheduling_stats['short_circuited'] += 1
                    break

                attempts += 1
                try:
                    result = task.handler(task.payload)
                    success = True
                    error = None
                    self.circuit_breaker.record_success()
                    break
                except Exception as e:
                    error = e
                    self.circuit_breaker.record_failure()
                    logger.warning(f"Task {task.task_id} failed (attempt {attempts}/{max_attempts}): {e}")
                    if attempts < max_attempts:
                        with self._lock:
                            self.scheduling_stats['total_retried'] += 1

            duration_ms = (self.clock() - started) * 1000.0
            completion = TaskCompletion(
                task_id=task.task_id,
                success=success,
                duration_ms=duration_ms,
                priority=task.priority,
                wait_ms=wait_ms,
                error=error,
                attempts=attempts,
                result=result
            )
            self._record_completion(completion)

            # Short-circuited tasks never ran and stay out of the error rate
            if self.metrics and attempts > 0:
                self.metrics.record_task_result(success, duration_ms)
            if self.event_bus:
                self.event_bus.emit(TASK_COMPLETED, completion)

        finally:
            with self._lock:
                self.in_flight.pop(task.task_id, None)

    def _record_completion(self, completion: TaskCompletion):
        with self._lock:
            stats = self.scheduling_stats
            stats['total_completed'] += 1
            if not completion.success:
                stats['total_failed'] += 1

            total = stats['total_completed']
            stats['avg_wait_ms'] = (stats['avg_wait_ms'] * (total - 1) + completion.wait_ms) / total

    # ===============================================================================
    # OVERLOAD SIGNALLING
    # ===============================================================================

    def _check_overload(self):
        with self._lock:
            if self.current_load <= self.overload_ratio * self.max_capacity:
                return
            if self._overload_pending.is_set():
                return
            self._overload_pending.set()
            self.scheduling_stats['overload_signals'] += 1

        logger.warning(f"Scheduler overloaded ({self.current_load}/{self.max_capacity}) - requesting load shedding")
        threading.Thread(target=self._signal_overload, name="procopt-load-shedding", daemon=True).start()

    def _signal_overload(self):
        try:
            if self.event_bus:
                self.event_bus.emit(LOAD_SHEDDING_REQUESTED, {
                    'current_load': self.current_load,
                    'max_capacity': self.max_capacity,
                })
            if self.on_overload:
                self.on_overload()
        except Exception as e:
            logger.error(f"Load shedding handler failed: {e}")
        finally:
            self._overload_pending.clear()

    @property
    def overload_signal_pending(self) -> bool:
        return self._overload_pending.is_set()

    # ===============================================================================
    # MODES AND STATISTICS
    # ===============================================================================

    def set_lightweight_first(self, enabled: bool):
        if enabled != self.lightweight_first:
            logger.info(f"Lightweight-first dispatch {'enabled' if enabled else 'disabled'}")
        self.lightweight_first = enabled

    def set_redundancy(self, enabled: bool):
        if enabled != self.redundancy_enabled:
            logger.info(f"Redundant execution {'enabled' if enabled else 'disabled'}")
        self.redundancy_enabled = enabled

    def queue_depths(self) -> Dict[str, int]:
        with self._lock:
            return {priority.value: len(queue) for priority, queue in self.queues.items()}

    def statistics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'queue_depths': self.queue_depths(),
                'in_flight': len(self.in_flight),
                'current_load': self.current_load,
                'max_capacity': self.max_capacity,
                'dispatch_limit': self.dispatch_limit,
                'lightweight_first': self.lightweight_first,
                'redundancy_enabled': self.redundancy_enabled,
                'circuit_breaker': self.circuit_breaker.to_dict(),
                'scheduling_stats': self.scheduling_stats.copy(),
            }

    def shutdown(self, wait: bool = True):
        self._shutdown = True
        self.executor.shutdown(wait=wait)
        logger.info("TaskScheduler shut down")
