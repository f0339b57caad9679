from typing import ClassVar

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Request body whose fields arrive in camelCase from the web client."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    # Optional fields that may be omitted but never sent as an explicit null.
    non_nullable: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode='before')
    @classmethod
    def reject_explicit_nulls(cls, data):
        if not isinstance(data, dict):
            return data
        for field in cls.non_nullable:
            alias = to_camel(field)
            for key in (alias, field):
                if key in data and data[key] is None:
                    raise ValueError(f'{alias} cannot be null')
        return data

    def updates(self, column_map: dict[str, str] | None = None) -> dict:
        """Fields the client actually sent, keyed by column name."""
        column_map = column_map or {}
        return {
            column_map.get(field, field): value
            for field, value in self.model_dump(exclude_unset=True).items()
        }


class OrmModel(BaseModel):
    class Config:
        from_attributes = True
