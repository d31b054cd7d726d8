"""
Root-level conftest for all tests.

Environment defaults are set before any catalogfeed import, because
logging reads JSON_LOGS and LOGLEVEL at module load time.
"""
import os

if not os.getenv("JSON_LOGS"):
    os.environ["JSON_LOGS"] = "true"
if not os.getenv("LOGLEVEL"):
    os.environ["LOGLEVEL"] = "WARNING"
