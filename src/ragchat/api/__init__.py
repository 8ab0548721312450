"""HTTP routers."""

from .rag import router

__all__ = ["router"]
