"""Pydantic schemas for directory writes and index maintenance reports."""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FieldType(str, Enum):
    """Custom field value types."""

    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    SELECT = "select"
    MULTISELECT = "multiselect"
    URL = "url"
    EMAIL = "email"


class _RenameUpdate(BaseModel):
    """Partial update whose name may be omitted but never cleared."""

    name: str | None = Field(default=None, min_length=1)

    @field_validator("name")
    @classmethod
    def name_not_null(cls, value: str | None) -> str:
        """Reject an explicit null name; the column is NOT NULL."""
        if value is None:
            raise ValueError("name cannot be null")
        return value


class DepartmentUpdate(_RenameUpdate):
    """Partial department update; only fields that are set are written."""

    description: str | None = None
    parent_id: str | None = None
    sort_order: int | None = None


class PersonUpdate(_RenameUpdate):
    """Partial person update; only fields that are set are written."""

    title: str | None = None
    email: str | None = None
    phone: str | None = None
    department_id: str | None = None
    sort_order: int | None = None


class CustomFieldUpdate(_RenameUpdate):
    """Partial custom field definition update."""

    options: list[str] | None = None
    is_required: bool | None = None
    is_searchable: bool | None = None
    sort_order: int | None = None


class RebuildScope(str, Enum):
    """Set of indexes a rebuild covers."""

    DEPARTMENT = "department"
    PERSON = "person"
    CUSTOM_FIELDS = "customFields"
    ALL = "all"


class TableHealth(BaseModel):
    """Expected versus actual row count of one index table."""

    model_config = ConfigDict(populate_by_name=True)

    table: str
    expected: int
    actual: int
    in_sync: bool = Field(alias="inSync")


class IndexStatistics(BaseModel):
    """Indexed row counts and a coarse size estimate.

    Attributes:
        departments: Rows in the department content index.
        people: Rows in the person content index.
        custom_fields: Rows in the custom-field index.
        estimated_size_bytes: Sum of segment sizes across all indexes.
        recommendations: Suggested operator actions.
    """

    model_config = ConfigDict(populate_by_name=True)

    departments: int
    people: int
    custom_fields: int = Field(alias="customFields")
    estimated_size_bytes: int = Field(alias="estimatedSizeBytes")
    recommendations: list[str] = Field(default_factory=list)


class IndexHealth(BaseModel):
    """Integrity report across every text index."""

    model_config = ConfigDict(populate_by_name=True)

    healthy: bool
    tables: list[TableHealth]
    issues: list[str]
    last_checked: datetime = Field(alias="lastChecked")
    statistics: IndexStatistics


class MaintenanceRun(BaseModel):
    """Outcome of one scheduled maintenance pass."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    action: Literal["rebuild", "optimize"] | None = None
    healthy: bool | None = None
    error: str | None = None
    duration_ms: float = Field(alias="durationMs")
