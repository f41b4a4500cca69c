from .routes import versions_bp

__all__ = ["versions_bp"]
