"""protodef - ProtoDef binary protocol compiler."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("protodef")
except PackageNotFoundError:
    __version__ = "(local)"
