"""
Лимиты контрактов очередей.

Назначение:
- общие ограничения полей (используются и парсером, и моделями)
"""

from __future__ import annotations

PERSONA_NAME_MAX_LEN = 80
