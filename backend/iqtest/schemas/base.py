"""
Base schema for every JSON body the API reads or writes.

Fields are declared in snake_case and exchanged in camelCase; input also
accepts the snake_case names.
"""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )
