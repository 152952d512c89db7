"""API router initialization"""
from fastapi import APIRouter
from journal.api.routes import ctrader

api_router = APIRouter()

api_router.include_router(ctrader.router, prefix="/ctrader", tags=["ctrader"])
