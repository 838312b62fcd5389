"""
Контракты задач очередей (Pydantic-модели).

Правила:
- payload всегда JSON, ключи в camelCase (как их шлёт продюсер)
- внутри Python поля в snake_case (alias + populate_by_name)
- IntakeJob неизменяем после постановки в очередь
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AnyUrl, BaseModel, ConfigDict, Field

from persona_relay.domain.enums import SkipReason

from .versions import PERSONA_NAME_MAX_LEN


# =============================================================================
# ВХОД: enhance (producer -> pipeline)
# =============================================================================
class IntakeJob(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    guild_id: str | None = Field(default=None, alias="guildId")
    channel_id: str = Field(alias="channelId")
    message_id: str = Field(alias="messageId")
    author_id: str = Field(alias="authorId")
    raw: str


# =============================================================================
# ВЫХОД: dispatch (pipeline -> delivery)
# =============================================================================
class Persona(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1, max_length=PERSONA_NAME_MAX_LEN)
    avatar_url: AnyUrl | None = Field(default=None, alias="avatarUrl")


class OutputJob(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    guild_id: str | None = Field(default=None, alias="guildId")
    channel_id: str = Field(alias="channelId")
    message_id: str = Field(alias="messageId")
    persona: Persona
    text: str = Field(min_length=1)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True) | {
            "guildId": self.guild_id
        }


# =============================================================================
# РЕЗУЛЬТАТ enhance (return value задачи)
# =============================================================================
class EnhanceResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Literal["emitted", "skipped"]
    skipped: SkipReason | None = None
    persona: str | None = None
    length: int | None = Field(default=None, alias="len")
    dispatch_job_id: str | None = Field(default=None, alias="dispatchJobId")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# DLQ
# =============================================================================
class DeadLetterRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    original_payload: dict[str, Any] = Field(alias="originalPayload")
    failure_reason: str = Field(alias="failureReason")
    attempts_made: int = Field(alias="attemptsMade")
    recorded_at: str = Field(alias="recordedAt")
    job_id: str | None = Field(default=None, alias="jobId")
    queue: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
