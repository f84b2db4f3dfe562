#!/usr/bin/env python3
import sys
import os

print("Running preflight import check...")
try:
    os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

    import app.main
    print("Import app.main: OK")

    import app.core.state_machine
    print("Import app.core.state_machine: OK")

    # SOCKS support is an optional httpx extra; without it no transport can be built
    import socksio  # noqa: F401
    print("Import socksio (httpx[socks]): OK")

    print("Preflight check passed.")
    sys.exit(0)
except Exception as e:
    print(f"Preflight check FAILED: {e}")
    import traceback
    traceback.print_exc()
    sys.exit(1)
