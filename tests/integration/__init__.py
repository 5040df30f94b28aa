"""
Integration tests for the Kizuna bot.

These tests verify that components work together correctly. The marketplace
HTTP session and Telegram are mocked; everything else is real.

Run with:
    pytest tests/integration/ -v -m integration

Skip with:
    pytest -m "not integration"
"""
