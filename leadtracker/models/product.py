from pydantic import BaseModel, Field


class Product(BaseModel):
    name: str
    variations: list[str] = Field(default_factory=list)


class ProductMentionStats(BaseModel):
    model_config = {"populate_by_name": True}

    mentions: int = 0
    last_mention: str | None = Field(default=None, alias="lastMention")
    trend: int = 0


class ProductStats(BaseModel):
    name: str
    stats: ProductMentionStats
