"""
Разбор триггеров из сырого текста сообщения.

Правила (первое совпадение выигрывает, ввод предварительно обрезается):
1. ";say <текст>"  -> персона по умолчанию
2. ";<имя> <текст>" -> имя [a-z0-9_][a-z0-9_-]* (ASCII, без учёта регистра), до 80 символов
3. всё остальное   -> None (это не ошибка, просто не триггер)
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from persona_relay.common.config import get_settings
from persona_relay.contracts.versions import PERSONA_NAME_MAX_LEN

from .normalizer import normalize_text_with_meta

# классы букв заданы явно: IGNORECASE в Unicode-режиме сопоставил бы ſ, знак Кельвина, İ и ı
# с ASCII-буквами; \s остаётся юникодным
SAY_RE = re.compile(r"^;[Ss][Aa][Yy]\s+(.+)", re.DOTALL)
NAMED_RE = re.compile(r"^;([A-Za-z0-9_][A-Za-z0-9_\-]*)\s+(.+)$", re.DOTALL)


@dataclass(frozen=True)
class Trigger:
    persona: str
    text: str
    # шаги нормализации, применённые к тексту
    applied: tuple[str, ...] = ()


def _build(persona: str, body: str) -> Trigger:
    text, meta = normalize_text_with_meta(body)
    return Trigger(persona=persona, text=text, applied=tuple(meta["applied"]))


def parse_trigger(raw: str, *, default_persona: str | None = None) -> Trigger | None:
    trimmed = (raw or "").strip()

    m = SAY_RE.match(trimmed)
    if m:
        persona = default_persona or get_settings().default_persona_name
        return _build(persona, m.group(1))

    m = NAMED_RE.match(trimmed)
    if m:
        return _build(m.group(1)[:PERSONA_NAME_MAX_LEN], m.group(2))

    return None
