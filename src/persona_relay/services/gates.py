"""
Гейты допуска стадии enhance: cooldown автора и burst-дедуп.

Оба гейта это один claim (SET NX PX) с разными ключами и окнами:
- cooldown: cd:<guild|dm>:<channel>:<author>, окно COOLDOWN_MS (750)
- дедуп:    dupe:<guild|dm>:<channel>:<persona>:<sha1>, окно DEDUPE_WINDOW_MS (2000)

Отказ гейта означает "пропустить": без ожидания, без ретрая, без постановки в очередь.
"""

from __future__ import annotations

from persona_relay.common.config import get_settings
from persona_relay.common.utils import sha1_hex
from persona_relay.contracts.queue_events import IntakeJob, OutputJob
from persona_relay.queue.claims import ClaimStore, get_claim_store

DM_SCOPE = "dm"


def _scope(guild_id: str | None) -> str:
    return guild_id or DM_SCOPE


def cooldown_key(*, guild_id: str | None, channel_id: str, author_id: str) -> str:
    return f"cd:{_scope(guild_id)}:{channel_id}:{author_id}"


def content_fingerprint(*, channel_id: str, persona: str, text: str) -> str:
    """
    Отпечаток уже нормализованного текста: косметические различия сырого ввода
    схлопываются, если нормализуются одинаково.
    """
    return sha1_hex(f"{channel_id}|{persona}|{text}")


def dedupe_key(*, guild_id: str | None, channel_id: str, persona: str, text: str) -> str:
    h = content_fingerprint(channel_id=channel_id, persona=persona, text=text)
    return f"dupe:{_scope(guild_id)}:{channel_id}:{persona}:{h}"


def claim_author_cooldown(job: IntakeJob, store: ClaimStore | None = None) -> bool:
    store = store or get_claim_store()
    key = cooldown_key(guild_id=job.guild_id, channel_id=job.channel_id, author_id=job.author_id)
    return store.claim(key, get_settings().cooldown_ms)


def claim_burst_window(out: OutputJob, store: ClaimStore | None = None) -> bool:
    store = store or get_claim_store()
    key = dedupe_key(
        guild_id=out.guild_id,
        channel_id=out.channel_id,
        persona=out.persona.name,
        text=out.text,
    )
    return store.claim(key, get_settings().dedupe_window_ms)
