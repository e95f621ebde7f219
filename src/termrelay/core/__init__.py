from termrelay.core.router import ConnectionRouter

__all__ = ["ConnectionRouter"]
