#!/usr/bin/env python3
"""
pactmock CLI wrapper

Runs the pactmock command-line interface from a source checkout.

Examples:
    # Serve a contract
    python3 pact-mock-server.py start consumer-provider.json --port 1234

    # Check a request offline
    python3 pact-mock-server.py check consumer-provider.json request.json
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent / 'src'))

from pactmock.cli import main


if __name__ == '__main__':
    sys.exit(main())
