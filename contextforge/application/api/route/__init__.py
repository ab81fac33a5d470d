from .generations import router as generations_router

__all__ = ["generations_router"]
