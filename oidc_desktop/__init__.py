"""oidc-desktop - OAuth 2.0 / OpenID Connect login for desktop apps using the system browser."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("oidc-desktop")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback for development

__all__ = [
    "__version__",
    "Config",
    "OAuthConfiguration",
    "AppConfiguration",
    "load_config",
    "ClassifiedError",
    "ErrorCodes",
    "ErrorHandler",
    "ApiClient",
    "OAuthManager",
    "OutputHandler",
]

# Lazy imports to avoid circular dependencies
def __getattr__(name: str) -> object:
    """Lazy import module components."""
    if name in ("Config", "OAuthConfiguration", "AppConfiguration", "load_config"):
        from . import config
        return getattr(config, name)
    elif name in ("ClassifiedError", "ErrorCodes", "ErrorHandler"):
        from . import errors
        return getattr(errors, name)
    elif name == "ApiClient":
        from .api_client import ApiClient
        return ApiClient
    elif name == "OAuthManager":
        from .oauth import OAuthManager
        return OAuthManager
    elif name == "OutputHandler":
        from .output import OutputHandler
        return OutputHandler
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
