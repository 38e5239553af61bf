"""
Root pytest configuration for the CDS Hooks service.

Sets up Python path and test environment variables for all test directories.
"""

import os
import sys
from pathlib import Path

# Set test environment variables before anything else imports settings
os.environ.setdefault("CDS_ENVIRONMENT", "testing")
os.environ.setdefault("CDS_LOG_LEVEL", "DEBUG")

# Project root
project_root = Path(__file__).parent

if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))
