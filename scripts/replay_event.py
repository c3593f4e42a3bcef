#!/usr/bin/env python3
"""Replay a saved Shopify webhook body against a running order-sync service.

Usage:
    python scripts/replay_event.py \
        --url http://localhost:8000 \
        --topic orders/updated \
        --file order_1001.json

Exit code 0 if the service acknowledged the event, 1 otherwise.
"""

import argparse
import json
import sys
from pathlib import Path

import httpx

TIMEOUT = 30.0


def replay(url: str, topic: str, body: dict, shop_domain: str) -> tuple[bool, str]:
    """POST the body to the webhook endpoint with Shopify-style headers."""
    endpoint = url.rstrip("/") + "/api/v1/webhooks/shopify"
    headers = {
        "X-Shopify-Topic": topic,
        "X-Shopify-Shop-Domain": shop_domain,
        "X-Shopify-Webhook-Id": "replay",
    }
    try:
        response = httpx.post(endpoint, json=body, headers=headers, timeout=TIMEOUT)
    except httpx.TimeoutException:
        return False, "Request timed out"
    except httpx.HTTPError as exc:
        return False, f"HTTP error: {exc}"

    if response.status_code == 200:
        return True, response.text
    return False, f"HTTP {response.status_code}: {response.text}"


def main() -> int:
    parser = argparse.ArgumentParser(description="Replay a saved Shopify webhook body")
    parser.add_argument("--url", default="http://localhost:8000", help="Service base URL")
    parser.add_argument(
        "--topic",
        required=True,
        choices=["orders/create", "orders/updated", "refunds/create"],
        help="Webhook topic to send",
    )
    parser.add_argument("--file", required=True, help="JSON file holding the webhook body")
    parser.add_argument("--shop-domain", default="replay.myshopify.com")
    args = parser.parse_args()

    try:
        body = json.loads(Path(args.file).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        print(f"Cannot read {args.file}: {exc}", file=sys.stderr)
        return 1

    ok, detail = replay(args.url, args.topic, body, args.shop_domain)
    print(("OK  " if ok else "FAIL") + f" {args.topic}: {detail}")
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
