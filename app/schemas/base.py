"""Shared schema base for API-facing models."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Model with camelCase JSON aliases that also accepts snake_case input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        """Dump to a JSON-safe dict keyed by alias."""
        return self.model_dump(mode="json", by_alias=True)
