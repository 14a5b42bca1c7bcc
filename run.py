#!/usr/bin/env python3
"""
ACID Ledger Demo Entry Point

Starts the FastAPI server (port 8090 unless ACID_LEDGER_API_PORT says otherwise).
"""

import sys

from acid_ledger.api import run_server
from acid_ledger.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("🏦 Starting ACID Ledger Demo...")
    print(f"📒 Transaction log sink: {config.log_sink}")
    print("🔒 Strategies: uncontrolled, atomic, optimistic, pessimistic")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\n👋 Shutting down ACID Ledger Demo...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
