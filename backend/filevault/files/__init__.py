from .routes import files_bp, folders_bp

__all__ = ["files_bp", "folders_bp"]
