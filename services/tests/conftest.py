"""
Top-level test configuration for tfgate.
"""

import os

# Ensure test-friendly defaults
os.environ.setdefault("TFGATE_JSON_LOGS", "false")
os.environ.setdefault("TFGATE_LOG_LEVEL", "DEBUG")
os.environ.setdefault("TFGATE_SECRET", "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff")
