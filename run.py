#!/usr/bin/env python3
"""
Real-Estate CRM Lending Entry Point

Starts the FastAPI server with host and port taken from REALTY_* settings.
"""

import sys

from realty_crm.api import run_server
from realty_crm.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("🏗️  Starting Real-Estate CRM Lending API...")
    print("💰 Loan figures use Decimal precision")
    print(f"🗄️  Storage backend: {config.storage_backend}")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server()
    except KeyboardInterrupt:
        print("\n👋 Shutting down Real-Estate CRM Lending API...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
