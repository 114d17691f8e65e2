#!/usr/bin/env python3
"""
Configuration Tests

Validation rules, YAML/JSON loading, overrides and default file generation.
"""

import json
import os
import sys
import tempfile
import unittest
from pathlib import Path

import yaml

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from procopt.optimizer_core.config import (
    CacheLevelConfig, ConfigManager, OptimizerConfig, PoolDefinition, load_config
)
from procopt.optimizer_core.exceptions import ConfigurationError
from procopt.optimizer_core.models import EvictionPolicy, TaskPriority


class TestOptimizerConfigValidation(unittest.TestCase):

    def test_defaults_are_valid(self):
        config = OptimizerConfig()
        config.validate()

        self.assertEqual(config.sample_interval_ms, 1000)
        self.assertEqual(config.max_capacity, 1000)
        self.assertEqual([p.name for p in config.pool_definitions], ["connections", "workers", "memory_buffers"])
        self.assertEqual(config.kind_priorities['batch'], TaskPriority.LOW)

    def test_invalid_settings(self):
        test_cases = [
            ({'sample_interval_ms': 0}, 'sample_interval_ms'),
            ({'max_capacity': -1}, 'max_capacity'),
            ({'overload_ratio': 1.5}, 'overload_ratio'),
            ({'metrics_window': 1}, 'metrics_window'),
            ({'forecast_horizons': 0}, 'forecast_horizons'),
            ({'cache_levels': OptimizerConfig().cache_levels[:2]}, 'cache_levels'),
            ({'cache_levels': [
                CacheLevelConfig(1000, 50, EvictionPolicy.LRU),
                CacheLevelConfig(500, 200, EvictionPolicy.LFU),
                CacheLevelConfig(60000, 1000, EvictionPolicy.TTL),
            ]}, 'cache_levels'),
            ({'pool_definitions': [PoolDefinition("a", 1), PoolDefinition("a", 2)]}, 'pool_definitions'),
            ({'pool_definitions': [PoolDefinition("", 1)]}, 'pool_definitions'),
            ({'pool_definitions': [PoolDefinition("a", 10, max_capacity=5)]}, 'pool_definitions'),
        ]
        for changes, key in test_cases:
            with self.subTest(changes=changes):
                config = OptimizerConfig(**changes)
                with self.assertRaises(ConfigurationError) as ctx:
                    config.validate()
                self.assertEqual(ctx.exception.config_key, key)

    def test_dict_round_trip_keeps_nested_types(self):
        data = OptimizerConfig().to_dict()
        self.assertEqual(data['cache_levels'][1]['eviction_policy'], 'lfu')
        self.assertEqual(data['kind_priorities']['interactive'], 'high')

        config = OptimizerConfig.from_dict(data)
        self.assertEqual(config.cache_levels[2].eviction_policy, EvictionPolicy.TTL)
        self.assertEqual(config.pool_definitions[0].capacity, 10)
        self.assertEqual(config.thresholds.cpu_high_percent, 80.0)

    def test_from_dict_rejects_bad_structure(self):
        test_cases = [
            {'cache_levels': [{'ttl_ms': 1}]},
            {'thresholds': {'no_such_threshold': 1}},
            {'kind_priorities': {'batch': 'urgent'}},
        ]
        for data in test_cases:
            with self.subTest(data=data):
                with self.assertRaises(ConfigurationError):
                    OptimizerConfig.from_dict(data)

    def test_quoted_numbers_are_converted(self):
        config = OptimizerConfig.from_dict({
            'max_capacity': "10",
            'sample_interval_ms': "250",
            'pool_definitions': [{'name': "connections", 'capacity': "5", 'max_capacity': "20"}],
            'thresholds': {'cpu_high_percent': "70"},
        })
        config.validate()

        self.assertEqual(config.max_capacity, 10)
        self.assertEqual(config.sample_interval_ms, 250.0)
        self.assertEqual(config.pool_definitions[0].capacity, 5)
        self.assertEqual(config.pool_definitions[0].max_capacity, 20)
        self.assertEqual(config.thresholds.cpu_high_percent, 70.0)

    def test_unconvertible_values(self):
        test_cases = [
            ({'max_capacity': "ten"}, 'max_capacity'),
            ({'overload_ratio': [0.5]}, 'overload_ratio'),
            ({'pool_definitions': [{'name': "p", 'capacity': "many"}]}, 'pool_definitions'),
            ({'thresholds': {'latency_high_ms': "slow"}}, 'thresholds'),
        ]
        for data, key in test_cases:
            with self.subTest(data=data):
                with self.assertRaises(ConfigurationError) as ctx:
                    OptimizerConfig.from_dict(data)
                self.assertEqual(ctx.exception.config_key, key)

    def test_unknown_keys_are_ignored(self):
        with self.assertLogs('procopt.optimizer_core.config', level='WARNING'):
            config = OptimizerConfig.from_dict({'not_a_setting': 1, 'max_capacity': 50})
        self.assertEqual(config.max_capacity, 50)
        self.assertFalse(hasattr(config, 'not_a_setting'))


class TestConfigManager(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self.temp_dir.cleanup)

    def path(self, name: str) -> str:
        return os.path.join(self.temp_dir.name, name)

    def test_no_file_gives_defaults(self):
        self.assertEqual(load_config().max_capacity, 1000)

    def test_yaml_file(self):
        path = self.path("procopt.yaml")
        with open(path, 'w', encoding='utf-8') as f:
            yaml.safe_dump({'max_capacity': 200, 'thresholds': {'cpu_high_percent': 70}}, f)

        config = load_config(path)
        self.assertEqual(config.max_capacity, 200)
        self.assertEqual(config.thresholds.cpu_high_percent, 70)
        self.assertEqual(config.thresholds.memory_high_percent, 85.0)

    def test_json_file(self):
        path = self.path("procopt.json")
        with open(path, 'w', encoding='utf-8') as f:
            json.dump({'worker_threads': 4}, f)

        self.assertEqual(load_config(path).worker_threads, 4)

    def test_quoted_yaml_number(self):
        path = self.path("procopt.yaml")
        with open(path, 'w', encoding='utf-8') as f:
            f.write('max_capacity: "10"\n')

        self.assertEqual(load_config(path).max_capacity, 10)

    def test_overrides_win(self):
        path = self.path("procopt.yaml")
        with open(path, 'w', encoding='utf-8') as f:
            yaml.safe_dump({'max_capacity': 200, 'worker_threads': 8}, f)

        config = ConfigManager(path, overrides={'max_capacity': 300, 'worker_threads': None}).get_config()
        self.assertEqual(config.max_capacity, 300)
        self.assertEqual(config.worker_threads, 8)

    def test_load_errors(self):
        bad_yaml = self.path("bad.yaml")
        with open(bad_yaml, 'w', encoding='utf-8') as f:
            f.write("max_capacity: [unclosed\n")
        list_root = self.path("list.yaml")
        with open(list_root, 'w', encoding='utf-8') as f:
            f.write("- 1\n- 2\n")
        invalid_value = self.path("invalid.yaml")
        with open(invalid_value, 'w', encoding='utf-8') as f:
            f.write("max_capacity: 0\n")
        wrong_type = self.path("wrong_type.yaml")
        with open(wrong_type, 'w', encoding='utf-8') as f:
            f.write("max_capacity: lots\n")

        for path in (self.path("missing.yaml"), bad_yaml, list_root, invalid_value, wrong_type):
            with self.subTest(path=path):
                with self.assertRaises(ConfigurationError):
                    load_config(path)

    def test_write_default_config(self):
        target = ConfigManager.write_default_config(self.path("nested/procopt.yaml"))

        self.assertTrue(target.exists())
        self.assertTrue(target.read_text(encoding='utf-8').startswith("# ProcOpt Configuration File"))
        config = load_config(str(target))
        self.assertEqual(config.to_dict(), OptimizerConfig().to_dict())


if __name__ == '__main__':
    unittest.main()
