#!/usr/bin/env python3
"""Поставить intake-задачу в очередь enhance (ручная проверка пайплайна)."""

from __future__ import annotations

import argparse
import json
import os
import secrets

from persona_relay.common.errors import StartupError
from persona_relay.common.logging import setup_logging
from persona_relay.queue.dispatcher import enqueue_enhance, enqueue_enhance_payload
from persona_relay.queue.redis import close_redis_client


def _args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Enqueue a trigger candidate into the enhance queue")
    p.add_argument("raw", nargs="?", default=";say hello world", help="Raw message text")
    p.add_argument("--guild-id", default=os.getenv("ENQUEUE_GUILD_ID"))
    p.add_argument("--channel-id", default=os.getenv("ENQUEUE_CHANNEL_ID", "c1"))
    p.add_argument("--author-id", default=os.getenv("ENQUEUE_AUTHOR_ID", "u1"))
    p.add_argument("--message-id", default=None, help="Defaults to a random id")
    p.add_argument(
        "--payload-json",
        default=None,
        help="Enqueue this JSON object as-is (skips the other options)",
    )
    return p.parse_args()


def main() -> int:
    args = _args()
    setup_logging()
    try:
        if args.payload_json:
            payload = json.loads(args.payload_json)
            if not isinstance(payload, dict):
                print("enqueue failed: --payload-json must be a JSON object")
                return 2
            res = enqueue_enhance_payload(payload)
        else:
            res = enqueue_enhance(
                guild_id=args.guild_id,
                channel_id=args.channel_id,
                message_id=args.message_id or f"m_{secrets.token_hex(6)}",
                author_id=args.author_id,
                raw=args.raw,
            )
    except (StartupError, json.JSONDecodeError) as e:
        print(f"enqueue failed: {e}")
        return 1
    finally:
        close_redis_client()

    print(f"[enqueue] added job id: {res.job_id} (created={res.created})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
