"""
Pydantic schemas mirroring the REST contract.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, validator

from ..models import clamp_minutes


class SubjectModel(BaseModel):
    id: str
    name: str
    color: Optional[str] = None


class BlockInput(BaseModel):
    subject_id: str = Field(
        default="",
        validation_alias=AliasChoices("subject_id", "subjectId", "subject"),
    )
    allocated_minutes: int = Field(
        default=60,
        validation_alias=AliasChoices("allocated_minutes", "allocatedMinutes", "minutes"),
    )

    model_config = ConfigDict(populate_by_name=True)

    @validator("subject_id", pre=True)
    def _normalise_subject(cls, value: object) -> str:
        return str(value or "").strip()

    @validator("allocated_minutes", pre=True)
    def _clamp_minutes(cls, value: object) -> int:
        return clamp_minutes(value)


class CycleDraftRequest(BaseModel):
    name: str = ""
    blocks: List[BlockInput] = Field(default_factory=list)


class CycleCreateRequest(CycleDraftRequest):
    owner_id: str = Field(validation_alias=AliasChoices("owner_id", "ownerId", "user_id", "userId"))

    model_config = ConfigDict(populate_by_name=True)

    @validator("owner_id", pre=True)
    def _require_owner(cls, value: object) -> str:
        result = str(value or "").strip()
        if not result:
            raise ValueError("owner_id is required")
        return result


class CycleActiveRequest(BaseModel):
    is_active: bool = Field(validation_alias=AliasChoices("is_active", "isActive", "active"))

    model_config = ConfigDict(populate_by_name=True)


class PlayerOpenRequest(BaseModel):
    user_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("user_id", "userId"),
    )

    model_config = ConfigDict(populate_by_name=True)


class PlayerCommandRequest(BaseModel):
    op: str
    index: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("index", "blockIndex", "block_index"),
    )

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    @validator("op", pre=True)
    def _normalise_op(cls, value: object) -> str:
        result = str(value or "").strip()
        if not result:
            raise ValueError("op is required")
        return result
