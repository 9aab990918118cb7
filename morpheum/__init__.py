"""
morpheum - A chat-driven coding assistant for Matrix rooms
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("morpheum-bot")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
__logo__ = "🤖"
