"""
Version information for the gasless relay.
"""
import importlib.metadata
import pathlib

import tomli

DEFAULT_VERSION = "0.1.0"

try:
    __version__ = importlib.metadata.version("gasless-relay")
except importlib.metadata.PackageNotFoundError:
    # Source checkout: read pyproject.toml next to the package
    try:
        path = pathlib.Path(__file__).parent.parent / "pyproject.toml"
        with path.open("rb") as f:
            data = tomli.load(f)
        __version__ = data["project"]["version"]
    except (FileNotFoundError, KeyError, tomli.TOMLDecodeError):
        __version__ = DEFAULT_VERSION
