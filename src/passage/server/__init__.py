from .app import RelayServer
from .links import build_share_link

__all__ = ["RelayServer", "build_share_link"]
