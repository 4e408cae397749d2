from feedback360.api.main import app

__all__ = ["app"]
