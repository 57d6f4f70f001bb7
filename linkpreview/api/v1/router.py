from fastapi import APIRouter

from linkpreview.api.v1 import cache, link_preview

api_router = APIRouter(prefix="/api")

api_router.include_router(link_preview.router, tags=["Link Preview"])
api_router.include_router(cache.router, prefix="/cache", tags=["Cache"])
