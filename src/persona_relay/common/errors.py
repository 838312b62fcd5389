"""
Единые ошибки и коды ошибок.

Назначение:
- предсказуемые коды для очередей/DLQ/логов
- единый стиль исключений по проекту
"""

from __future__ import annotations

from dataclasses import dataclass


class ErrCode:
    # Общие
    VALIDATION = "validation"

    # Пайплайн
    INVALID_TRANSITION = "invalid_transition"

    # Инфра
    REDIS_ERROR = "redis_error"
    STARTUP = "startup"


@dataclass
class AppError(Exception):
    """
    Базовая ошибка приложения.
    - code: стабильный код ошибки
    - message: безопасное сообщение
    - details: доп. данные (без текста сообщений пользователей)
    """

    code: str
    message: str
    details: dict | None = None

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.code}: {self.message}"


class ValidationError(AppError):
    def __init__(self, message: str = "Ошибка валидации", details: dict | None = None) -> None:
        super().__init__(ErrCode.VALIDATION, message, details)


class InvalidTransitionError(AppError):
    def __init__(self, message: str = "Недопустимый переход", details: dict | None = None) -> None:
        super().__init__(ErrCode.INVALID_TRANSITION, message, details)


class StoreUnavailableError(AppError):
    def __init__(self, message: str = "Хранилище недоступно", details: dict | None = None) -> None:
        super().__init__(ErrCode.REDIS_ERROR, message, details)


class StartupError(AppError):
    def __init__(self, message: str = "Ошибка старта", details: dict | None = None) -> None:
        super().__init__(ErrCode.STARTUP, message, details)
