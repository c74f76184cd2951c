"""Test package for the knowledge client.

Structure:
    - unit/: Individual function and class tests
    - integration/: Client components against the mock backend

Backends are simulated with httpx.MockTransport in unit tests and with the
FastAPI mock app over ASGITransport in integration tests, so no network
access is needed. Leverages pytest with pytest-check for soft assertions.
"""
