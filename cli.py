# cli.py

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path

from tqdm import tqdm

from config import ViewerConfig
from core.errors import LoadFailure, NotFound
from core.filters import DetectionCache, FilterMode
from core.navigator import ImageNavigator
from core.sort_options import SortDirection, SortField, parse_sort_field
from utils.file_utils import format_file_size
from utils.logging_config import PerformanceLogger, setup_logging
from utils.performance_monitor import PerformanceMonitor, memory_snapshot

logger = logging.getLogger(__name__)


def load_labels(labels_path: str, directory: Path) -> DetectionCache:
    """
    Read classification results from JSON.

    Expected shape: {"image.jpg": [["cat", 0.92], ["dog", 0.05]], ...}
    Relative keys are resolved against the image directory.
    """
    with open(labels_path, 'r') as f:
        raw = json.load(f)

    cache = DetectionCache()
    for name, labels in raw.items():
        path = Path(name)
        if not path.is_absolute():
            path = directory / path
        cache.store(os.path.abspath(path), labels)
    return cache


def _build_navigator(args, config: ViewerConfig, metrics: PerformanceLogger = None) -> ImageNavigator:
    if getattr(args, 'sort', None):
        config.navigation.sort_field = parse_sort_field(args.sort).value
    if getattr(args, 'descending', False):
        config.navigation.sort_direction = SortDirection.DESCENDING.value
    if getattr(args, 'radius', None) is not None:
        config.navigation.preload_radius = args.radius
    if getattr(args, 'no_loop', False):
        config.navigation.loop_around = False

    detection_cache = None
    if getattr(args, 'labels', None):
        target = Path(os.path.abspath(args.path))
        directory = target if target.is_dir() else target.parent
        detection_cache = load_labels(args.labels, directory)

    if getattr(args, 'include', None):
        config.filters.object_filter_mode = FilterMode.INCLUDE_ONLY.value
        config.filters.object_filter_text = args.include
    elif getattr(args, 'exclude', None):
        config.filters.object_filter_mode = FilterMode.EXCLUDE.value
        config.filters.object_filter_text = args.exclude
    if getattr(args, 'threshold', None) is not None:
        config.filters.object_filter_threshold = args.threshold

    return ImageNavigator(config, detection_cache=detection_cache, metrics=metrics)


def list_command(args, config: ViewerConfig) -> int:
    """Print the ordered, filtered sequence"""
    navigator = _build_navigator(args, config)
    with navigator:
        try:
            navigator.open(args.path)
        except NotFound as e:
            print(f"Error: {e}")
            return 1

        sequence = navigator.sequence
        for position in range(sequence.count):
            entry = sequence.entry(position)
            marker = '>' if position == sequence.current_position else ' '
            if args.verbose:
                print(f"{marker}{position:6d}  {format_file_size(entry.size):>10}  {entry.name}")
            else:
                print(f"{marker}{position:6d}  {entry.name}")

        print(f"\n{navigator.status()}")
    return 0


def walk_command(args, config: ViewerConfig) -> int:
    """
    Step through the sequence like a viewer would and report latency.

    Each step asks for the current image (waiting only on a cache miss),
    warms the window around it, then moves on.
    """
    metrics = PerformanceLogger()
    navigator = _build_navigator(args, config, metrics)

    with navigator, PerformanceMonitor(update_interval=0.5) as monitor:
        try:
            navigator.open(args.path)
        except NotFound as e:
            print(f"Error: {e}")
            return 1

        steps = args.steps or navigator.sequence.count
        failures = 0
        for _ in tqdm(range(steps), desc="Walking images"):
            start = time.perf_counter()
            try:
                navigator.show()
            except LoadFailure as e:
                failures += 1
                logger.warning("Skipping %s: %s", e.identifier, e.__cause__ or e)
            metrics.log_metric('show', time.perf_counter() - start)

            if args.backwards:
                navigator.previous()
            else:
                navigator.next()
            if args.delay:
                time.sleep(args.delay)

        cache_stats = navigator.cache.stats() if navigator.cache else {}

    show_stats = metrics.get_statistics('show')
    load_stats = metrics.get_statistics('load')

    print("\n" + "="*60)
    print("WALK REPORT")
    print("="*60)
    print(f"Images:        {navigator.status()}")
    print(f"Steps:         {steps} ({failures} failed)")
    if show_stats:
        print(f"Show latency:  mean {show_stats['mean'] * 1000:.2f}ms, "
              f"p95 {show_stats['p95'] * 1000:.2f}ms, max {show_stats['max'] * 1000:.2f}ms")
    if load_stats:
        print(f"Decode time:   mean {load_stats['mean'] * 1000:.2f}ms over {load_stats['count']} loads")
    for key, value in cache_stats.items():
        print(f"Cache {key + ':':<9}{value}")
    print(f"Peak RSS:      {monitor.peak_rss_mb:.1f} MB")
    print(f"Current RSS:   {memory_snapshot()['rss_mb']:.1f} MB")

    if args.output:
        metrics.save_metrics(args.output)
        print(f"\nMetrics saved to: {args.output}")
    return 0


def init_config_command(args, config: ViewerConfig) -> int:
    """Write a default configuration file"""
    path = Path(args.output)
    if path.exists() and not args.force:
        print(f"Error: {path} already exists (use --force to overwrite)")
        return 1
    ViewerConfig().save(str(path))
    print(f"Configuration written to: {path}")
    return 0


def _add_view_arguments(parser):
    parser.add_argument('path', help='Image directory, or an image inside it')
    parser.add_argument('-s', '--sort', choices=[f.value for f in SortField],
                        help='Sort field')
    parser.add_argument('-d', '--descending', action='store_true',
                        help='Sort in descending order')
    parser.add_argument('--labels', help='JSON file with classification labels')
    group = parser.add_mutually_exclusive_group()
    group.add_argument('--include', help='Only show images with a matching label')
    group.add_argument('--exclude', help='Hide images with a matching label')
    parser.add_argument('--threshold', type=float,
                        help='Minimum label confidence for --include/--exclude')


def main_cli(argv=None) -> int:
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description="Image Navigator - Command Line Interface"
    )
    parser.add_argument('-c', '--config', default='config.yaml',
                        help='Configuration file')
    parser.add_argument('--log-level', help='Override the configured log level')
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # List command
    list_parser = subparsers.add_parser('list', help='List images in navigation order')
    _add_view_arguments(list_parser)
    list_parser.add_argument('-v', '--verbose', action='store_true',
                             help='Show file sizes')
    list_parser.set_defaults(func=list_command)

    # Walk command
    walk_parser = subparsers.add_parser('walk', help='Step through images with prefetching')
    _add_view_arguments(walk_parser)
    walk_parser.add_argument('-r', '--radius', type=int, help='Preload radius')
    walk_parser.add_argument('-n', '--steps', type=int, default=0,
                             help='Number of steps (default: one pass)')
    walk_parser.add_argument('-b', '--backwards', action='store_true',
                             help='Walk towards the start')
    walk_parser.add_argument('--no-loop', action='store_true',
                             help='Stop at the ends instead of wrapping')
    walk_parser.add_argument('--delay', type=float, default=0.0,
                             help='Seconds to wait between steps')
    walk_parser.add_argument('-o', '--output', help='Output JSON file for metrics')
    walk_parser.set_defaults(func=walk_command)

    # Config command
    config_parser = subparsers.add_parser('init-config', help='Write a default configuration')
    config_parser.add_argument('output', nargs='?', default='config.yaml',
                               help='Destination path')
    config_parser.add_argument('-f', '--force', action='store_true',
                               help='Overwrite an existing file')
    config_parser.set_defaults(func=init_config_command)

    # Parse arguments
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    config = ViewerConfig.load(args.config)
    setup_logging(args.log_level or config.log_level, config.log_dir)

    # Execute command
    return args.func(args, config)


if __name__ == "__main__":
    sys.exit(main_cli())
