#!/usr/bin/env python3
"""
Check the ombudsman backend's aggregation contract.
It posts a sample filter set to `/filter/aggregated` and lists canonical keys the payload lacks.
Run it directly before a release; it exits non-zero when the backend is unreachable or the payload is malformed.
"""
# ruff: noqa: E402

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from src.common.logging import configure_logging
from src.filter_engine.api_client import ApiUnavailableError, OmbudsmanApiClient
from src.filter_engine.engine_config import load_engine_config
from src.filter_engine.field_map import build_page_local_filters
from src.filter_engine.normalization import (
    AGGREGATED_ENDPOINT,
    missing_top_level_keys,
    normalize_aggregation,
)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Check the backend aggregation contract")
    parser.add_argument("--base-url", default=None, help="Override the configured backend URL")
    parser.add_argument("--config", default=None, help="Path to the filter engine YAML config")
    parser.add_argument("--month", default=None, help="Sample month filter (YYYY-MM)")
    parser.add_argument("--status", default="em-andamento", help="Sample status filter")
    parser.add_argument("--strict", action="store_true", help="Fail when canonical keys are missing")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging("INFO")

    config = load_engine_config(config_path=args.config)
    client = OmbudsmanApiClient(
        base_url=args.base_url or config.api_base_url,
        timeout_seconds=config.endpoint_timeouts.get(AGGREGATED_ENDPOINT, config.request_timeout_seconds),
    )
    filters = build_page_local_filters(month=args.month, status=args.status)

    try:
        payload = client.post_aggregated(filters)
        missing = missing_top_level_keys(payload)
        result = normalize_aggregation(payload)
    except (ApiUnavailableError, ValueError) as exc:
        print(f"Backend contract check failed: {exc}", file=sys.stderr)
        return 1

    print(
        json.dumps(
            {
                "endpoint": AGGREGATED_ENDPOINT,
                "filters": filters.to_payload(),
                "missing_keys": missing,
                "total_manifestations": result.total_manifestations,
            },
            indent=2,
            ensure_ascii=False,
        )
    )

    if missing and args.strict:
        print("Canonical keys are missing from the aggregation payload.", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
