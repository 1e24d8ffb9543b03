#!/usr/bin/env python3
"""
chartkit HTTP Server Runner
"""

import os

from dotenv import load_dotenv

from chartkit.crosscutting.logging import setup_logging
from chartkit.interfaces.http import HTTPServer


def main():
    """Run the HTTP server."""
    load_dotenv()
    setup_logging(os.getenv('CHARTKIT_LOG_LEVEL', 'INFO'))
    server = HTTPServer(
        host=os.getenv('CHARTKIT_HOST', 'localhost'),
        port=int(os.getenv('CHARTKIT_PORT', '3000')),
        debug=os.getenv('CHARTKIT_DEBUG', '0') == '1'
    )
    server.run()


if __name__ == '__main__':
    main()
