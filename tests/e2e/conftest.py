"""Pytest configuration and fixtures for E2E tests."""
import os

import httpx
import pytest
from playwright.sync_api import Page


# Test configuration
BASE_URL = os.getenv("E2E_BASE_URL", "http://localhost:8080")
TEST_TIMEOUT = 30000  # 30 seconds


# Note: pytest-playwright provides these built-in options:
# --headed: Run tests in headed mode (visible browser)
# --slowmo: Slow down operations by N milliseconds
# --browser: Choose browser (chromium, firefox, webkit)


@pytest.fixture(scope="session", autouse=True)
def require_server():
    """Skip the browser tests when no server is listening."""
    try:
        httpx.get(f"{BASE_URL}/api/health", timeout=2.0).raise_for_status()
    except httpx.HTTPError:
        pytest.skip(f"no server running at {BASE_URL}")


@pytest.fixture
def app_page(page: Page) -> Page:
    """Navigate to the upload/ask page and return the page object."""
    page.goto(BASE_URL)
    page.wait_for_load_state("networkidle")
    page.set_default_timeout(TEST_TIMEOUT)
    return page


@pytest.fixture
def test_document():
    """Text indexed before asking about it."""
    return "The Go programming language was created at Google in 2007."
