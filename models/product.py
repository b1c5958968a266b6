"""Product lookup models (web search results for a BOQ item)."""

from typing import List, Optional

from pydantic import BaseModel, Field


class GroundingSource(BaseModel):
    """A web page the product details were taken from."""

    uri: str = Field(..., description="Source URL")
    title: str = Field(default="", description="Page title")


class ProductDetails(BaseModel):
    """Image, description and sources found for a product name."""

    product_name: str = Field(..., description="Name that was searched")
    image_url: Optional[str] = Field(None, description="Public image URL")
    description: str = Field(default="No details found.", description="Short technical description")
    sources: List[GroundingSource] = Field(default_factory=list, description="Pages used")
