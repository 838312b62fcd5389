"""
Общие утилиты проекта.

Правила:
- сюда кладём только реально общие функции
- без бизнес-логики
"""

from __future__ import annotations

import hashlib


def sha1_hex(text: str) -> str:
    """
    SHA1 от UTF-8 строки. Используется как отпечаток контента (не для безопасности).
    """
    return hashlib.sha1(text.encode("utf-8")).hexdigest()

