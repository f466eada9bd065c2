"""
Cloud Weather: Cross-Cloud Consensus CLI

Fetches current conditions for one location (or the default city batch)
from every configured provider deployment, prints the cross-cloud
consensus as JSON, and persists it.

Usage:
    python main.py --location "Paris"
    python main.py --lat 40.7128 --lon -74.0060 --name "New York"
    python main.py --providers aws,gcp --include-raw
    python main.py --provider aws          # one deployment's own response

Exit codes: 0 success, 1 total failure (explicit error JSON printed).
"""

import argparse
import asyncio
import json
import logging
import sys
import time
from dataclasses import replace
from pathlib import Path

import httpx
from dotenv import load_dotenv

from cloud_weather.config import Settings
from cloud_weather.errors import CloudWeatherError
from cloud_weather.models import AggregationRequest, ByCoordinates, ByName, utcnow
from cloud_weather.service import build_service, error_response

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='Cloud Weather - cross-cloud weather consensus'
    )
    parser.add_argument('--location', help='Free-text place name to geocode')
    parser.add_argument('--lat', type=float, help='Latitude (with --lon)')
    parser.add_argument('--lon', type=float, help='Longitude (with --lat)')
    parser.add_argument('--name', help='Display name for --lat/--lon')
    parser.add_argument('--providers', help='Comma separated subset of deployments')
    parser.add_argument('--provider', help='Run a single deployment and print its own response')
    parser.add_argument('--include-raw', action='store_true', help='Include per-source payloads')
    parser.add_argument('--db', help='Override the SQLite database path')
    args = parser.parse_args(argv)
    if (args.lat is None) != (args.lon is None):
        parser.error('--lat and --lon must be given together')
    return args


def setup_logging(settings: Settings):
    """Log to logs/cloud_weather.log and stdout."""
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(settings.log_dir / "cloud_weather.log", mode='a', encoding='utf-8'),
            logging.StreamHandler(sys.stderr)
        ]
    )


def build_request(args, settings: Settings) -> AggregationRequest:
    if args.location:
        refs = (ByName(args.location),)
    elif args.lat is not None:
        refs = (ByCoordinates(args.lat, args.lon, name=args.name),)
    else:
        refs = settings.default_locations
    providers = tuple(p for p in args.providers.split(',') if p) if args.providers else None
    return AggregationRequest(locations=refs, include_raw=args.include_raw, providers=providers)


async def run(args, settings: Settings) -> int:
    start = time.perf_counter()
    request = build_request(args, settings)

    async with httpx.AsyncClient() as client:
        service = build_service(settings, client)
        try:
            if args.provider:
                body = await service.run_provider(args.provider, request.locations, args.include_raw)
            else:
                response = await service.aggregate(request)
                body = response.to_dict()
        except (CloudWeatherError, KeyError) as e:
            logger.error(f"[main] Request failed: {e}")
            elapsed_ms = (time.perf_counter() - start) * 1000
            print(json.dumps(error_response(e, utcnow(), elapsed_ms), indent=2))
            return 1
        finally:
            if service.dispatcher is not None:
                await service.dispatcher.drain()

    print(json.dumps(body, indent=2))
    return 0 if body.get("success") else 1


def main(argv=None) -> int:
    load_dotenv()
    args = parse_args(argv)
    settings = Settings.from_env()
    if args.db:
        settings = replace(settings, db_path=Path(args.db))
    setup_logging(settings)

    logger.info("=" * 60)
    logger.info("Cloud Weather - Cross-Cloud Consensus")
    logger.info(f"Providers: {[p.name + (' (remote)' if p.is_remote else '') for p in settings.providers]}")
    logger.info("=" * 60)

    return asyncio.run(run(args, settings))


if __name__ == "__main__":
    sys.exit(main())
