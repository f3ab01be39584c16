from pydantic import BaseModel
from pydantic.alias_generators import to_camel

class CamelModel(BaseModel):
    """Base schema exchanging camelCase JSON with the front end"""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True
