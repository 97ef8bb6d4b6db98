"""cmsync keeps CI build workspaces in step with projects on a CM server."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("cmsync")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = ["__version__"]
