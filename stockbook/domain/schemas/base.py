"""Shared pydantic base for records stored in the ledger document."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake_case attributes, camelCase keys in the stored JSON.

    Unknown keys are kept so a round trip through the ledger never drops data
    written by other clients.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class CamelInput(CamelModel):
    """Input schema: same key style, unknown keys discarded."""

    model_config = ConfigDict(extra="ignore", use_enum_values=True, validate_default=True)
