from .settings import ManagerSettings, SiteProfile
from .site_loader import SiteConfigLoader

__all__ = ["ManagerSettings", "SiteConfigLoader", "SiteProfile"]
