from fastapi import APIRouter

from customs_edi.api.v1 import admin, archive, audit, declarations, edi, health

api_router = APIRouter()

api_router.include_router(health.router, prefix="/v1", tags=["health"])
api_router.include_router(declarations.router, prefix="/v1/declarations", tags=["declarations"])
api_router.include_router(edi.router, prefix="/v1/edi", tags=["edi"])
api_router.include_router(archive.router, prefix="/v1/archive", tags=["archive"])
api_router.include_router(audit.router, prefix="/v1/audit", tags=["audit"])
api_router.include_router(admin.router, prefix="/v1/admin", tags=["admin"])
