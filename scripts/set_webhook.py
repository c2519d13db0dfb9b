#!/usr/bin/env python
"""
Register (or remove) the relay's webhook with the messaging transport.

    python scripts/set_webhook.py relay.example.com
    python scripts/set_webhook.py https://relay.example.com/webhook
    python scripts/set_webhook.py --delete
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from relaybot.errors import TransportError  # noqa: E402
from relaybot.settings import settings  # noqa: E402
from relaybot.transport import TelegramClient  # noqa: E402


def build_webhook_url(target: str) -> str:
    """Accept a bare host or a full URL; bare hosts get https and /webhook."""
    target = target.strip().rstrip("/")
    if not target:
        raise ValueError("Webhook target must not be empty")
    if not target.startswith(("http://", "https://")):
        target = f"https://{target}"
    if not target.endswith("/webhook"):
        target = f"{target}/webhook"
    return target


async def _run(args: argparse.Namespace) -> int:
    if not settings.telegram_token:
        print("TELEGRAM_TOKEN is not configured", file=sys.stderr)
        return 1
    client = TelegramClient(settings.telegram_token, api_base=settings.telegram_api_base)
    try:
        if args.delete:
            await client.delete_webhook(drop_pending_updates=args.drop_pending)
            print("Webhook removed")
            return 0
        target = args.target or settings.webhook_url
        if not target:
            print("Provide a host/URL argument or set WEBHOOK_URL", file=sys.stderr)
            return 1
        url = build_webhook_url(target)
        await client.set_webhook(url)
        print(f"Webhook set to: {url}")
        return 0
    except TransportError as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1
    finally:
        await client.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("target", nargs="?", help="Public host or full webhook URL")
    parser.add_argument("--delete", action="store_true", help="Remove the webhook instead")
    parser.add_argument(
        "--drop-pending",
        action="store_true",
        help="With --delete, also drop updates queued on the transport",
    )
    return asyncio.run(_run(parser.parse_args(argv)))


if __name__ == "__main__":
    sys.exit(main())
