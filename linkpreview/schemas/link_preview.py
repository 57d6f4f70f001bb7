from pydantic import BaseModel, ConfigDict


class PreviewMetadata(BaseModel):
    """Preview card data for one URL. ``image``/``icon`` are proxy-relative paths."""

    url: str
    hostname: str
    title: str
    description: str = ""
    image: str = ""
    icon: str = ""

    model_config = ConfigDict(frozen=True)


class ErrorResponse(BaseModel):
    error: str


class RevalidateRequest(BaseModel):
    token: str | None = None
    tags: list[str] | str | None = None


class RevalidateResponse(BaseModel):
    ok: bool
    tags: list[str]
    invalidated: int
    timestamp: str
