"""API v1 汇总路由：统一挂载所有版本化的子路由。"""

from fastapi import APIRouter

from app.packages.sharebox.api.v1.endpoints import entries, rooms, share

api_router = APIRouter()
api_router.include_router(rooms.router)
api_router.include_router(entries.router)
api_router.include_router(share.router)
