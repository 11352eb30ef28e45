#!/usr/bin/env python3
import argparse
import json
import os
import sys
from typing import Any, Dict, List, Optional

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from servicehub.config import get_settings  # noqa: E402
from servicehub.logging_config import setup_logging  # noqa: E402
from servicehub.models import Service  # noqa: E402
from servicehub.services.marketplace_store import MarketplaceStore, create_store  # noqa: E402


def build_report(store: MarketplaceStore, popular: int) -> Dict[str, Any]:
    services = store.get_all_services()
    active = [service for service in services if service.active]
    per_category: Dict[str, int] = {}
    for service in services:
        key = service.category.strip() or "(none)"
        per_category[key] = per_category.get(key, 0) + 1

    return {
        "data_dir": store.data_dir,
        "summary": store.get_catalog_info(),
        "services_total": len(services),
        "services_active": len(active),
        "categories": store.get_categories(),
        "services_per_category": per_category,
        "search_history": store.get_search_history(),
        "popular": [_service_row(service) for service in store.get_popular_services(popular)],
    }


def _service_row(service: Service) -> Dict[str, Any]:
    return {
        "id": str(service.id),
        "title": service.title,
        "category": service.category,
        "price": service.price,
        "rating": service.rating,
    }


def render_text(report: Dict[str, Any], full_info: Optional[str] = None) -> str:
    lines: List[str] = [report["summary"], f"Data dir: {report['data_dir']}"]
    if full_info:
        lines.append(full_info)
    lines.append(f"Active services: {report['services_active']} / {report['services_total']}")
    lines.append("Categories:")
    for category in report["categories"]:
        lines.append(f"  - {category} ({report['services_per_category'].get(category, 0)})")
    if report["popular"]:
        lines.append("Popular:")
        for rank, row in enumerate(report["popular"], start=1):
            lines.append(f"  {rank}. {row['title'] or 'Untitled'} | {row['price']:.2f} | {row['rating']:.1f}")
    return "\n".join(lines)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Summarize the service catalog stored on disk.")
    parser.add_argument("--data-dir", default=None, help="Directory holding services.json and friends.")
    parser.add_argument("--popular", type=int, default=5, help="How many top-rated services to list.")
    parser.add_argument("--full", action="store_true", help="Include the detailed catalog dump.")
    parser.add_argument("--json", action="store_true", help="Emit JSON instead of text.")
    parser.add_argument("--log-level", default=None, help="Logging level (defaults to SERVICEHUB_LOG_LEVEL).")
    args = parser.parse_args(argv)

    settings = get_settings(data_dir=args.data_dir)
    setup_logging(level=args.log_level or settings.log_level)
    store = create_store(settings)
    report = build_report(store, popular=args.popular)

    if args.json:
        print(json.dumps(report, ensure_ascii=False, indent=2))
    else:
        print(render_text(report, store.get_catalog_full_info() if args.full else None))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
