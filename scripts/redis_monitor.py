#!/usr/bin/env python3
"""Стрим команд Redis (MONITOR) для отладки очередей и claim-ключей."""

from __future__ import annotations

import argparse
import os
from datetime import UTC, datetime

import redis


def _args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Stream Redis commands via MONITOR")
    p.add_argument("--url", default=os.getenv("REDIS_URL", "redis://localhost:6379"))
    return p.parse_args()


def _format(cmd: dict) -> str:
    ts = datetime.fromtimestamp(float(cmd.get("time", 0)), UTC).strftime("%H:%M:%S.%f")[:-3]
    source = f"{cmd.get('client_address')}:{cmd.get('client_port')}"
    return f"{ts} [db{cmd.get('db')}] {source} > {cmd.get('command')}"


def main() -> int:
    args = _args()
    client = redis.Redis.from_url(args.url, decode_responses=True)
    try:
        with client.monitor() as m:
            print(f"[monitor] Connected to {args.url}. Streaming commands...")
            for cmd in m.listen():
                print(_format(cmd))
    except KeyboardInterrupt:
        return 0
    except redis.RedisError as e:
        print(f"Failed to start MONITOR: {e}")
        return 1
    finally:
        client.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
