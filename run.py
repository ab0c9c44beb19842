#!/usr/bin/env python3
"""
Value Vault Entry Point

Starts the FastAPI server with the vault ledger configured from VAULT_*
environment variables (or a .env file).
"""

import sys

from value_vault.api import run_server
from value_vault.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Value Vault...")
    print(f"Bank cap: {config.bank_cap}  Withdraw limit: {config.withdraw_limit}")
    print(f"Storage: {config.database_path or 'in-memory'}")
    print(f"API available at: http://{config.api_host}:{config.api_port}")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port, debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Value Vault...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
