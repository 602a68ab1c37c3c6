from __future__ import annotations
import os

DATABASE_URL = os.environ["DATABASE_URL"]
REDIS_URL = os.environ["REDIS_URL"]
QUEUE_NAME = os.environ.get("QUEUE_NAME", "pagesflow:queue")
LEASE_SECONDS = int(os.environ.get("LEASE_SECONDS", "600"))
# leases a run may lose to expiry before it is marked failed
MAX_ATTEMPTS = int(os.environ.get("MAX_ATTEMPTS", "3"))
# workflow the control plane evaluates triggers against; agents load the same
# file from their checkout
WORKFLOW_FILE = os.environ.get("WORKFLOW_FILE", "docs_workflow.py")
SQL_ECHO = os.environ.get("SQL_ECHO", "") not in ("", "0", "false")
