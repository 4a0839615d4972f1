from .client import ManagerApiClient

__all__ = ["ManagerApiClient"]
