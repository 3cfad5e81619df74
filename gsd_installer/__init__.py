"""Safe install/uninstall engine for the gsd-opencode asset bundle."""

__version__ = "1.0.0"
