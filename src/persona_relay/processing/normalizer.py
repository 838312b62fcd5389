"""
Нормализация текста сообщения (grammar-lite).

Назначение:
- схлопнуть пробелы и обрезать края
- убрать пробел перед знаками препинания
- заглавная буква в начале и после конца предложения
- гарантировать финальный знак конца предложения

Ограничение: регистр меняется только у ASCII-букв, остальные символы как есть.
Функция детерминированная и идемпотентная.
"""

from __future__ import annotations

import re

MULTISPACE_RE = re.compile(r"\s+")
SPACE_BEFORE_PUNCT_RE = re.compile(r"\s+([,.;:!?])")
SENTENCE_START_RE = re.compile(r"(^|[.!?]\s+)([a-z])")
TERMINAL_CHARS = (".", "!", "?", "…")


def normalize_text_with_meta(raw_text: str) -> tuple[str, dict]:
    """
    Возвращает:
    - нормализованный текст
    - метаданные преобразований (для трассировки в логах)
    """
    meta: dict = {"applied": []}
    text = raw_text or ""

    # 1) пробелы
    text2 = MULTISPACE_RE.sub(" ", text).strip()
    if text2 != text:
        meta["applied"].append("whitespace_normalize")
        text = text2

    # 2) пробел перед пунктуацией
    text2 = SPACE_BEFORE_PUNCT_RE.sub(r"\1", text)
    if text2 != text:
        meta["applied"].append("punct_spacing")
        text = text2

    # 3) заглавные в начале предложений
    text2 = SENTENCE_START_RE.sub(lambda m: m.group(1) + m.group(2).upper(), text)
    if text2 != text:
        meta["applied"].append("sentence_case")
        text = text2

    # 4) финальная точка
    if not text.endswith(TERMINAL_CHARS):
        text += "."
        meta["applied"].append("final_punct")

    return text, meta


def normalize_text(raw_text: str) -> str:
    text, _ = normalize_text_with_meta(raw_text)
    return text
