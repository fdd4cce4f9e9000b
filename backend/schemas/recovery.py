from datetime import datetime, timezone

from pydantic import BaseModel, field_validator, model_validator


class RecoveryRequest(BaseModel):
    from_time: datetime
    to_time: datetime

    @field_validator("from_time", "to_time")
    @classmethod
    def _naive_utc(cls, v: datetime) -> datetime:
        # sales.created_at is stored as naive UTC
        if v.tzinfo is not None:
            v = v.astimezone(timezone.utc).replace(tzinfo=None)
        return v

    @model_validator(mode="after")
    def _window_order(self):
        if self.to_time < self.from_time:
            raise ValueError("to_time must not be before from_time")
        return self
