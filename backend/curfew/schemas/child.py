from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class ChildCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    age: int | None = Field(default=None, ge=0, le=25)

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Name cannot be empty")
        return trimmed


class ChildOut(BaseModel):
    id: str
    guardian_id: str
    name: str
    age: int | None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}
