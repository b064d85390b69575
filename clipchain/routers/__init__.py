"""Routers package initialization"""
from .videos import router as videos_router
from .credits import router as credits_router
from .jobs import router as jobs_router

__all__ = ["videos_router", "credits_router", "jobs_router"]
