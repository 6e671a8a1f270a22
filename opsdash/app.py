#!/usr/bin/env python3
"""
Ops Dashboard engine command-line entry point

Loads configuration, builds a backend (live API or mock scenario), loads one
view and prints its snapshot as JSON.

This is the main entry point. It wires together modular components:
- config_loader: Configuration loading from config.json and environment variables
- api_client / mock_backend: Backend data sources
- views: Per-view fetch, stats and ordering
"""

import argparse
import asyncio
import json
import os
import sys
import logging

# Add parent directory to path to allow direct execution (python3 opsdash/app.py)
_parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _parent_dir not in sys.path:
    sys.path.insert(0, _parent_dir)

from opsdash.api_client import ApiClient
from opsdash.config_loader import (
    PROJECT_ROOT,
    configure_logging,
    load_config,
    load_mock_data,
    validate_config,
)
from opsdash.mock_backend import MockBackend
from opsdash.pagination import TimeRange
from opsdash.pipeline import FILTER_ALL, SORT_KEYS
from opsdash.session import PreferenceStore, SessionContext
from opsdash.views import VIEWS, PipelinesView, ReleasesView

logger = logging.getLogger(__name__)


def build_parser():
    parser = argparse.ArgumentParser(description='Load one Ops Dashboard view and print it as JSON')
    parser.add_argument('view', choices=sorted(VIEWS), help='View to load')
    parser.add_argument('--filter', dest='predicate', default=FILTER_ALL, help='Active filter predicate')
    parser.add_argument('--value', default=None, help='Value for value-bearing filters (repository, status, ...)')
    parser.add_argument('--search', default='', help='Free-text search')
    parser.add_argument('--sort', default='newest', choices=SORT_KEYS, help='Secondary sort key')
    parser.add_argument('--time-range', default=None, help='Releases time range preset (12h, 1d, 7d, 15d, 30d)')
    parser.add_argument('--page', type=int, default=1, help='Releases page')
    parser.add_argument('--repository', default=None, help='Pipelines repository filter (server-side)')
    return parser


def build_backend(config, session):
    """Create the live API client or a mock backend

    Returns:
        ApiClient or MockBackend, or None if mock data cannot be loaded
    """
    if config['use_mock_data']:
        scenario = config['mock_scenario']
        if scenario:
            mock_file_path = os.path.join(PROJECT_ROOT, 'data', 'mock_scenarios', f'{scenario}.json')
        else:
            mock_file_path = os.path.join(PROJECT_ROOT, 'mock_data.json')

        logger.info("=" * 70)
        logger.info("MOCK DATA MODE ENABLED")
        logger.info("=" * 70)
        logger.info(f"  Scenario: {scenario if scenario else 'default'}")
        logger.info(f"  File: {os.path.abspath(mock_file_path)}")
        if config['mock_failures']:
            logger.info(f"  Forced failures: {', '.join(config['mock_failures'])}")
        logger.info("=" * 70)

        data = load_mock_data(scenario)
        if data is None:
            return None
        return MockBackend.from_config(config, data)

    return ApiClient(config['api_base_url'], session, timeout_sec=config['request_timeout_sec'])


def build_view(args, config, backend, session, preferences):
    view_cls = VIEWS[args.view]
    kwargs = {
        'session': session,
        'preferences': preferences,
        'timeout': config['request_timeout_sec'],
    }
    if view_cls is ReleasesView:
        kwargs['items_per_page'] = config['items_per_page']
        kwargs['time_range'] = TimeRange.preset(args.time_range or config['default_time_range'])
    elif view_cls is PipelinesView:
        kwargs['build_limit'] = config['build_limit']
    view = view_cls(backend, **kwargs)

    if view.kind is not None:
        view.set_filter(args.predicate, args.value)
        view.set_search(args.search)
        view.set_sort(args.sort)
    if isinstance(view, PipelinesView) and args.repository:
        view.repository = args.repository
    return view


async def run_view(view, backend, page=1):
    async with backend:
        snapshot = await view.load()
        if isinstance(view, ReleasesView) and page != 1 and view.is_ready():
            snapshot = await view.change_page(page) or snapshot
    return snapshot


def main(argv=None):
    """Main entry point"""
    args = build_parser().parse_args(argv)

    configure_logging()
    config = load_config()

    if not validate_config(config):
        logger.error("Aborted due to configuration errors")
        return 1

    session = SessionContext.from_config(
        config, on_sign_out=lambda: logger.warning("Session expired: sign in again and update OPSDASH_API_TOKEN"))
    preferences = PreferenceStore(config['preferences_path'])

    backend = build_backend(config, session)
    if backend is None:
        logger.error("Failed to load mock data. Exiting.")
        return 1

    try:
        view = build_view(args, config, backend, session, preferences)
    except ValueError as e:
        logger.error(f"Invalid arguments: {e}")
        return 1

    snapshot = asyncio.run(run_view(view, backend, args.page))
    print(json.dumps(snapshot, indent=2, default=str))

    if snapshot['error'] is not None:
        logger.error(f"View {args.view} failed: {snapshot['error']['message']}")
        return 2
    return 0


if __name__ == '__main__':
    sys.exit(main() or 0)
