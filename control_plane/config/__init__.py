from control_plane.config.settings import Settings, settings

__all__ = ["Settings", "settings"]
