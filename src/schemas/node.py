"""
Nodes pool schemas
"""
from typing import Optional
from pydantic import BaseModel, Field

from nodes.pool import UI_CATEGORIES


class UINodeRegister(BaseModel):
    """A UI component stored elsewhere and registered at runtime"""
    type: str = Field(..., min_length=1)
    category: str
    name: Optional[str] = None
    icon: Optional[str] = None
    description: Optional[str] = None
    template: Optional[str] = None
    schema_: Optional[str] = Field(None, alias="schema")

    class Config:
        populate_by_name = True

    def to_component_data(self) -> dict:
        return {
            "type": self.type,
            "category": self.category,
            "name": self.name,
            "icon": self.icon,
            "description": self.description,
            "template": self.template,
            "schema": self.schema_,
        }


UI_CATEGORY_NAMES = list(UI_CATEGORIES.values())
