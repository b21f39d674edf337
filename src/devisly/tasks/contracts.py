"""Task contracts - internal payload definitions without PII.

Task payloads cross the queue (and its logs), so they carry database ids
only. Message text, phone numbers and chat ids stay in Postgres.
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, StrictInt, field_validator

PROCESS_MESSAGE_PATH = "/tasks/messages/process"


class ProcessMessageTask(BaseModel):
    """Process one inbound whatsapp_messages row.

    Attributes:
        message_record_id: Primary key of the stored inbound record.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    url_path: ClassVar[str] = PROCESS_MESSAGE_PATH

    message_record_id: StrictInt

    @field_validator("message_record_id")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("message_record_id must be positive")
        return value

    @property
    def task_id(self) -> str:
        """Stable per record, so a re-enqueue dedupes in the queue."""
        return f"message:{self.message_record_id}"

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump()

    @classmethod
    def from_payload(cls, data: Any) -> ProcessMessageTask:
        """Parse a task body.

        Raises:
            ValueError: If message_record_id is missing or not a positive
                integer (pydantic's ValidationError is a ValueError).
        """
        return cls.model_validate(data)
