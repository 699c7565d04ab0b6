"""groupbot - a group-chat companion that decides when to speak."""

__version__ = "0.3.0"
__logo__ = "💬"
