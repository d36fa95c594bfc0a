"""
Operator Bot Module

Telegram side of the MAA remote control bot: the task composition dialog
and its python-telegram-bot binding.

Note: not named `telegram` to avoid shadowing the python-telegram-bot package.
"""

__version__ = "0.3.0"
