from .display import Colors, ConsoleDisplay, colored

__all__ = ["Colors", "ConsoleDisplay", "colored"]
