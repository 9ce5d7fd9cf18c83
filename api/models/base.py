# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Base entity models with common fields and validation.
"""

from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict
from bson import ObjectId


def generate_object_id() -> str:
    """Generate a new MongoDB ObjectId as string."""
    return str(ObjectId())


class BaseEntity(BaseModel):
    """Base entity with common fields for all stored records."""

    model_config = ConfigDict(
        # Allow population by field name or alias
        populate_by_name=True,
        # Use enum values instead of enum objects
        use_enum_values=True,
        # Validate assignment
        validate_assignment=True,
        # Arbitrary types allowed
        arbitrary_types_allowed=True
    )

    id: str = Field(default_factory=generate_object_id, description="Unique identifier")
    created_at: datetime = Field(default_factory=datetime.utcnow, description="Creation timestamp")

    def to_document(self) -> dict:
        """Serialize for storage, leaving id handling to the store."""
        return self.model_dump(exclude={"id"})


class TimestampedEntity(BaseEntity):
    """Entity that also tracks its last modification."""

    updated_at: datetime = Field(default_factory=datetime.utcnow, description="Last update timestamp")

    def touch(self) -> None:
        """Refresh the update timestamp."""
        self.updated_at = datetime.utcnow()
