from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class PaginationMeta(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    page: int
    limit: int
    total: int
    total_pages: int
