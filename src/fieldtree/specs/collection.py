"""
Collection specification types.

A collection is a named document type with a root field tree.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .field import FieldKind, FieldSpec, find_field

CREATED_AT = "createdAt"
UPDATED_AT = "updatedAt"
ID_FIELD = "id"


class CollectionSpec(BaseModel):
    """
    Collection specification.

    Example:
        CollectionSpec(
            slug="text-fields",
            fields=[
                FieldSpec(kind="text", name="text", required=True),
                FieldSpec(kind="text", name="localizedText", localized=True),
            ],
        )
    """

    slug: str = Field(description="Collection identifier")
    label: str | None = Field(default=None, description="Human-readable label")
    fields: list[FieldSpec] = Field(default_factory=list, description="Root field tree")
    timestamps: bool = Field(default=True, description="Maintain createdAt/updatedAt")
    default_sort: str | None = Field(default=None, description="Sort key, '-' prefix for desc")

    model_config = ConfigDict(frozen=True)

    @field_validator("slug")
    @classmethod
    def validate_slug(cls, v: str) -> str:
        """Ensure slug is a url-safe identifier."""
        if not v or not v.replace("-", "").replace("_", "").isalnum():
            raise ValueError(f"Collection slug '{v}' must be alphanumeric (with _ or -)")
        return v

    @property
    def system_fields(self) -> list[FieldSpec]:
        """Implicit fields maintained by the write pipeline."""
        if not self.timestamps:
            return []
        return [
            FieldSpec(kind=FieldKind.DATE, name=CREATED_AT),
            FieldSpec(kind=FieldKind.DATE, name=UPDATED_AT),
        ]

    def get_field(self, name: str) -> FieldSpec | None:
        """Get a top-level field by storage key."""
        return find_field(self.fields + self.system_fields, name)
