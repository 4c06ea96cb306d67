"""
VittaSami REST API server.

Run with ``python api_server.py``; configuration is read from the
environment or a local ``.env`` file.
"""

from vittasami.api.app import main

if __name__ == "__main__":
    main()
