#!/usr/bin/env python3
"""
Adaptive Optimizer Integration Tests

Lifecycle, host operations, event wiring between subsystems, reports
and suggestions of the optimizer facade.
"""

import sys
import time
import unittest
from datetime import datetime, timedelta
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from procopt import AdaptiveOptimizer, OptimizerConfig, create_adaptive_optimizer
from procopt.core.adaptive_optimizer import OptimizerState
from procopt.optimizer_core.config import CacheLevelConfig
from procopt.optimizer_core.exceptions import ConfigurationError, OptimizerError, UnknownPoolError
from procopt.optimizer_core.models import CachePriority, EvictionPolicy, OptimizationType


def wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def quiet_sources(cpu=10.0, memory=20.0):
    return {'cpu_percent': lambda: cpu, 'memory_percent': lambda: memory}


class OptimizerTestCase(unittest.TestCase):

    def make_optimizer(self, sources=None, **config_changes) -> AdaptiveOptimizer:
        config_changes.setdefault('max_capacity', 10)
        config_changes.setdefault('worker_threads', 4)
        optimizer = AdaptiveOptimizer(OptimizerConfig(**config_changes),
                                      metric_sources=sources or quiet_sources())
        self.addCleanup(optimizer.close)
        return optimizer


class TestOptimizerLifecycle(OptimizerTestCase):

    def test_invalid_config_rejected_at_construction(self):
        with self.assertRaises(ConfigurationError):
            AdaptiveOptimizer(OptimizerConfig(cache_levels=[
                CacheLevelConfig(1000, 50, EvictionPolicy.LRU),
            ]))

    def test_start_stop(self):
        optimizer = self.make_optimizer()
        self.assertEqual(optimizer.state, OptimizerState.CREATED)

        optimizer.start()
        optimizer.start()
        self.assertEqual(optimizer.state, OptimizerState.RUNNING)
        self.assertTrue(all(worker.running for worker in optimizer.workers))
        self.assertEqual(len(optimizer.workers), 6)

        optimizer.stop()
        self.assertEqual(optimizer.state, OptimizerState.STOPPED)
        self.assertFalse(any(worker.running for worker in optimizer.workers))

        with self.assertRaises(OptimizerError):
            optimizer.start()

    def test_context_manager(self):
        with self.make_optimizer() as optimizer:
            self.assertEqual(optimizer.state, OptimizerState.RUNNING)
        self.assertEqual(optimizer.state, OptimizerState.STOPPED)

    def test_background_workers_process_tasks(self):
        optimizer = self.make_optimizer(sample_interval_ms=20, dispatch_interval_ms=10)
        results = []
        optimizer.on_task_completed(results.append)

        with optimizer:
            optimizer.enqueue_task(lambda x: x + 1, payload=1)
            self.assertTrue(wait_until(lambda: len(results) == 1))
            self.assertTrue(wait_until(lambda: optimizer.metrics.samples_taken >= 2))

        self.assertTrue(results[0].success)
        self.assertEqual(results[0].result, 2)

    def test_factory(self):
        optimizer = create_adaptive_optimizer(OptimizerConfig(worker_threads=2), metric_sources=quiet_sources())
        self.addCleanup(optimizer.close)
        self.assertIsInstance(optimizer, AdaptiveOptimizer)


class TestOptimizerOperations(OptimizerTestCase):

    def test_cache_operations(self):
        optimizer = self.make_optimizer()

        self.assertEqual(optimizer.cache_get("k"), (None, False))
        self.assertTrue(optimizer.cache_put("k", "v", CachePriority.HIGH))
        self.assertEqual(optimizer.cache_get("k"), ("v", True))

    def test_successful_result_is_cached(self):
        optimizer = self.make_optimizer()

        optimizer.enqueue_task(lambda item: f"processed:{item}", payload="a", cache_key="item-a")
        optimizer.enqueue_task(lambda item: 1 / 0, payload="b", cache_key="item-b")
        optimizer.scheduler.dispatch_once()

        self.assertTrue(wait_until(lambda: optimizer.cache_get("item-a")[1]))
        self.assertEqual(optimizer.cache_get("item-a"), ("processed:a", True))
        self.assertTrue(wait_until(lambda: optimizer.scheduler.scheduling_stats['total_completed'] == 2))
        self.assertEqual(optimizer.cache_get("item-b"), (None, False))

    def test_resource_operations(self):
        optimizer = self.make_optimizer()

        handle = optimizer.acquire_resource("connections", timeout=0.1)
        self.assertIsNotNone(handle)
        self.assertTrue(optimizer.release_resource("connections", handle))

        with self.assertRaises(UnknownPoolError):
            optimizer.acquire_resource("gpus")

    def test_high_cpu_sample_triggers_controller(self):
        optimizer = self.make_optimizer(sources=quiet_sources(cpu=95.0))
        optimizer.collect_metrics()

        events = optimizer.controller.recent_events()
        self.assertEqual(events[-1].optimization_type, OptimizationType.CPU)
        self.assertTrue(optimizer.scheduler.lightweight_first)

    def test_overload_sheds_load(self):
        optimizer = self.make_optimizer()
        for _ in range(9):
            optimizer.enqueue_task(lambda _: None)

        self.assertTrue(wait_until(lambda: optimizer.controller.optimization_stats['total_optimizations'] >= 1))
        self.assertEqual(optimizer.controller.recent_events()[0].optimization_type,
                         OptimizationType.LOAD_SHEDDING)

    def test_confident_forecast_pre_scales_pools(self):
        optimizer = self.make_optimizer()
        now = datetime(2024, 1, 1, 9, 0)
        for _ in range(3):
            optimizer.forecaster.record(9, at=now + timedelta(hours=1))

        optimizer.forecaster.generate_forecasts(now=now)

        self.assertEqual(optimizer.get_forecast("+1h").expected_load, 9)
        self.assertEqual(optimizer.pools.get_pool("connections").capacity, 12)
        self.assertEqual(optimizer.controller.recent_events()[-1].optimization_type,
                         OptimizationType.PREDICTIVE_SCALING)

    def test_capture_load_pattern(self):
        optimizer = self.make_optimizer()
        optimizer.enqueue_task(lambda _: None)
        optimizer.collect_metrics()
        optimizer.capture_load_pattern()

        self.assertEqual(optimizer.forecaster.observations_recorded, 1)
        observation = next(iter(optimizer.forecaster.patterns.values()))[0]
        self.assertEqual(observation.observed_load, 1)
        self.assertEqual(observation.cpu_percent, 10.0)


class TestOptimizerReporting(OptimizerTestCase):

    def test_report_structure(self):
        optimizer = self.make_optimizer()
        optimizer.collect_metrics()
        report = optimizer.get_optimization_report()

        self.assertEqual(set(report), {'optimizer', 'performance', 'cache', 'queues',
                                       'pools', 'forecast', 'controller', 'timestamp'})
        self.assertEqual(report['optimizer']['status'], 'created')
        self.assertEqual(report['performance']['average_cpu_percent'], 10.0)
        self.assertEqual(report['queues']['max_capacity'], 10)
        self.assertEqual(set(report['pools']['pools']), {'connections', 'workers', 'memory_buffers'})

    def test_suggestions(self):
        optimizer = self.make_optimizer(sources=quiet_sources(cpu=90.0))
        optimizer.collect_metrics()
        # Not started, so enqueued tasks stay queued and count toward utilization
        for _ in range(9):
            optimizer.enqueue_task(lambda _: None, kind='batch')

        types = {s['type'] for s in optimizer.get_optimization_suggestions()}
        self.assertEqual(types, {'cpu', 'cache', 'scaling'})

    def test_no_suggestions_when_healthy(self):
        optimizer = self.make_optimizer()
        optimizer.collect_metrics()
        optimizer.cache_put("k", "v")
        optimizer.cache_get("k")

        self.assertEqual(optimizer.get_optimization_suggestions(), [])

    def test_history_persistence(self):
        optimizer = self.make_optimizer(sources=quiet_sources(cpu=95.0), history_db_url='sqlite://')
        optimizer.collect_metrics()

        history = optimizer.get_processing_stats()['history']
        self.assertEqual(history['samples_in_window'], 1)
        self.assertEqual(history['total_optimizations'], 1)

    def test_processing_stats_without_history(self):
        stats = self.make_optimizer().get_processing_stats()
        self.assertIsNone(stats['history'])
        self.assertEqual(set(stats), {'tasks', 'cache', 'optimizations', 'history'})


if __name__ == '__main__':
    unittest.main()
