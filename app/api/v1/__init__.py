"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import fiat, x402

api_router = APIRouter()

api_router.include_router(
    x402.router,
    prefix="/x402",
    tags=["x402"]
)

api_router.include_router(
    fiat.router,
    prefix="/fiat",
    tags=["fiat"]
)
