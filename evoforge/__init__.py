"""evoforge — asyncio evolutionary optimization engine."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("evoforge")
except PackageNotFoundError:
    __version__ = "0.1.0"  # fallback for development
