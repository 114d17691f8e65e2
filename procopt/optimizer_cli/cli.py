"""ProcOpt CLI - Configuration tools and a seeded workload simulation"""

import json
import logging
import random
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import click
import yaml
from rich.console import Console

from .. import __version__
from ..core.adaptive_optimizer import AdaptiveOptimizer
from ..optimizer_core.config import ConfigManager, load_config
from ..optimizer_core.exceptions import ConfigurationError
from ..optimizer_core.models import CachePriority, TaskCompletion
from .cli_base import build_table, print_key_values, setup_cli_logging

logger = logging.getLogger(__name__)

# Faster cadences so a short simulation exercises every periodic activity
SIMULATION_INTERVALS = {
    'sample_interval_ms': 250,
    'dispatch_interval_ms': 20,
    'cache_sweep_interval_ms': 1000,
    'rebalance_interval_ms': 1000,
    'pattern_capture_interval_ms': 500,
    'forecast_interval_ms': 2000,
}

WORKLOAD_KINDS = ('interactive', 'api', 'batch', 'background')
DRAIN_TIMEOUT_SECONDS = 10.0


@dataclass
class SimulatedWork:
    """Pre-drawn outcome of one synthetic task"""
    item: str
    duration_s: float
    fails: bool


def _load(config_path: Optional[str], overrides: Optional[Dict[str, Any]] = None):
    try:
        return load_config(config_path, overrides)
    except ConfigurationError as e:
        raise click.ClickException(str(e))


def _make_handler(optimizer: AdaptiveOptimizer):
    def handle(work: SimulatedWork):
        lease = optimizer.acquire_resource('connections', timeout=1.0) \
            if 'connections' in optimizer.pools.pools else None
        try:
            time.sleep(work.duration_s)
            if work.fails:
                raise RuntimeError(f"simulated failure processing {work.item}")
            return f"processed:{work.item}"
        finally:
            if lease is not None:
                optimizer.release_resource('connections', lease)
    return handle


def run_simulation(optimizer: AdaptiveOptimizer, tasks: int, duration: float,
                   seed: int, failure_rate: float) -> Dict[str, Any]:
    """Drive a seeded synthetic workload through a running optimizer"""
    rng = random.Random(seed)
    handler = _make_handler(optimizer)
    counters = {'enqueued': 0, 'cache_hits': 0, 'completed': 0, 'failed': 0}
    counters_lock = threading.Lock()

    def on_completed(completion: TaskCompletion):
        with counters_lock:
            counters['completed'] += 1
            if not completion.success:
                counters['failed'] += 1

    optimizer.on_task_completed(on_completed)

    batches = max(1, min(tasks, 20))
    pause = duration / batches
    distinct_items = max(1, tasks // 4)

    issued = 0
    for batch in range(batches):
        batch_size = tasks // batches + (1 if batch < tasks % batches else 0)
        for _ in range(batch_size):
            item = f"item-{rng.randrange(distinct_items)}"
            work = SimulatedWork(
                item=item,
                duration_s=rng.uniform(0.001, 0.02),
                fails=rng.random() < failure_rate
            )
            kind = rng.choice(WORKLOAD_KINDS)
            issued += 1

            _, found = optimizer.cache_get(item)
            if found:
                counters['cache_hits'] += 1
                continue

            optimizer.enqueue_task(
                handler,
                payload=work,
                kind=kind,
                cpu_intensive=kind in ('batch', 'background'),
                cache_key=item,
                cache_priority=CachePriority.HIGH if kind == 'interactive' else CachePriority.MEDIUM
            )
            counters['enqueued'] += 1
        time.sleep(pause)

    deadline = time.monotonic() + DRAIN_TIMEOUT_SECONDS
    while optimizer.scheduler.current_load > 0 and time.monotonic() < deadline:
        time.sleep(0.05)

    optimizer.collect_metrics()
    optimizer.capture_load_pattern()
    optimizer.forecaster.generate_forecasts()

    counters['issued'] = issued
    return counters


def render_report(console: Console, report: Dict[str, Any], counters: Dict[str, Any], suggestions):
    print_key_values(console, "Workload", counters)

    performance = {k: v for k, v in report['performance'].items() if k not in ('latest', 'trends')}
    print_key_values(console, "Performance", performance)

    cache = report['cache']
    console.print(build_table(
        "Cache Levels",
        ["Level", "Policy", "Entries", "Max", "TTL (ms)"],
        [[f"L{lvl['level']}", lvl['policy'], lvl['entries'], lvl['max_entries'], lvl['ttl_ms']]
         for lvl in cache['levels']]
    ))
    print_key_values(console, "Cache", {k: v for k, v in cache.items() if k != 'levels'})

    queues = report['queues']
    print_key_values(console, "Scheduler", {
        **{f"queue_{name}": depth for name, depth in queues['depths'].items()},
        'in_flight': queues['in_flight'],
        'utilization': queues['utilization'],
        **queues['statistics'],
    })

    console.print(build_table(
        f"Resource Pools (efficiency {report['pools']['efficiency']:.2f})",
        ["Pool", "Capacity", "In Use", "Utilization", "Created", "Destroyed"],
        [[name, p['capacity'], p['in_use'], p['utilization'], p['created'], p['destroyed']]
         for name, p in report['pools']['pools'].items()]
    ))

    forecasts = report['forecast']['forecasts']
    if forecasts:
        console.print(build_table(
            "Load Forecasts",
            ["Horizon", "Expected Load", "Confidence", "Samples"],
            [[label, f['expected_load'], f['confidence'], f['samples']] for label, f in forecasts.items()]
        ))

    controller = report['controller']
    console.print(build_table(
        "Optimizations",
        ["Type", "Reason", "Impact", "Success"],
        [[e['type'], e['trigger_reason'], e['impact'], e['success']] for e in controller['recent_events']]
    ))

    if suggestions:
        console.print(build_table(
            "Suggestions",
            ["Type", "Priority", "Suggestion", "Impact"],
            [[s['type'], s['priority'], s['suggestion'], s['impact']] for s in suggestions]
        ))
    else:
        console.print("[green]No optimization suggestions[/green]")


# ===============================================================================
# CLI COMMANDS
# ===============================================================================

@click.group(context_settings={'help_option_names': ['-h', '--help']})
@click.version_option(version=__version__, prog_name="procopt")
def main_cli():
    """ProcOpt - adaptive processing optimizer"""


@main_cli.command('init-config')
@click.argument('path', type=click.Path(dir_okay=False))
@click.option('--force', is_flag=True, help='Overwrite an existing file')
def init_config(path: str, force: bool):
    """Write a default YAML configuration to PATH"""
    if Path(path).exists() and not force:
        raise click.ClickException(f"{path} already exists (use --force to overwrite)")
    target = ConfigManager.write_default_config(path)
    click.echo(f"Created default configuration at: {target}")


@main_cli.command('show-config')
@click.option('-c', '--config', 'config_path', type=click.Path(exists=True, dir_okay=False),
              help='Configuration file (YAML or JSON)')
@click.option('--json', 'as_json', is_flag=True, help='Print as JSON instead of YAML')
def show_config(config_path: Optional[str], as_json: bool):
    """Print the effective configuration"""
    config = _load(config_path)
    if as_json:
        click.echo(json.dumps(config.to_dict(), indent=2))
    else:
        click.echo(yaml.safe_dump(config.to_dict(), sort_keys=False))


@main_cli.command('simulate')
@click.option('-c', '--config', 'config_path', type=click.Path(exists=True, dir_okay=False),
              help='Configuration file (YAML or JSON); default uses fast simulation cadences')
@click.option('-d', '--duration', type=float, default=3.0, show_default=True,
              help='Seconds over which tasks are submitted')
@click.option('-n', '--tasks', type=click.IntRange(min=1), default=200, show_default=True,
              help='Number of synthetic tasks')
@click.option('-s', '--seed', type=int, default=42, show_default=True, help='Workload random seed')
@click.option('-f', '--failure-rate', type=click.FloatRange(0.0, 1.0), default=0.05, show_default=True,
              help='Probability that a task handler fails')
@click.option('--history-db', help='SQLAlchemy URL for optimizer history (e.g. sqlite:///history.db)')
@click.option('--json', 'as_json', is_flag=True, help='Print the report as JSON')
@click.option('-V', '--verbose', is_flag=True, help='Verbose output (DEBUG level)')
def simulate(config_path: Optional[str], duration: float, tasks: int, seed: int,
             failure_rate: float, history_db: Optional[str], as_json: bool, verbose: bool):
    """Run the optimizer against a seeded synthetic workload and print its report"""
    setup_cli_logging(verbose=verbose)

    overrides: Dict[str, Any] = {} if config_path else dict(SIMULATION_INTERVALS)
    if history_db:
        overrides['history_db_url'] = history_db
    config = _load(config_path, overrides)

    logger.info(f"Simulating {tasks} tasks over {duration}s (seed {seed}, failure rate {failure_rate})")

    optimizer = AdaptiveOptimizer(config)
    try:
        optimizer.start()
        counters = run_simulation(optimizer, tasks, duration, seed, failure_rate)
        report = optimizer.get_optimization_report()
        suggestions = optimizer.get_optimization_suggestions()
        processing = optimizer.get_processing_stats()
    finally:
        optimizer.close()

    if as_json:
        click.echo(json.dumps({
            'workload': counters,
            'report': report,
            'suggestions': suggestions,
            'history': processing['history'],
        }, indent=2, default=str))
        return

    console = Console()
    render_report(console, report, counters, suggestions)
    if processing['history']:
        print_key_values(console, "Optimizer History", processing['history'])
