"""
Test Suite for the MAA remote control bot

This package contains all tests for the bot components:
- task_controller/ - registry, status resolver, HTTP endpoints, config
- operator_bot/ - dialog state machine and Telegram binding
"""
