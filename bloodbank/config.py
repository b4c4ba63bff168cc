"""Service configuration (environment variables with defaults)."""

import os

DATA_DIR = os.environ.get("BLOODBANK_DATA_DIR", "/data/bloodbank")

LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "5"))
EXPIRY_WARNING_DAYS = int(os.environ.get("EXPIRY_WARNING_DAYS", "7"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
PORT = int(os.environ.get("PORT", "8000"))

# MCP tool server
BLOODBANK_BASE = os.environ.get("BLOODBANK_BASE", "http://bloodbank:8000")
HEALTH_PORT = int(os.environ.get("HEALTH_PORT", "8001"))

# File names inside DATA_DIR
INVENTORY_FILE = "inventory.csv"
REQUESTS_FILE = "requests.csv"
TESTS_FILE = "tests.csv"
DONORS_FILE = "donors.csv"
RECIPIENTS_FILE = "recipients.csv"
