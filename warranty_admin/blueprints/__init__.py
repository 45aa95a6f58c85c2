from .warranties import warranties_bp

__all__ = ["warranties_bp"]
