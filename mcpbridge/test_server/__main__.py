"""Allow running as `python -m mcpbridge.test_server`."""

from mcpbridge.test_server.server import main

if __name__ == "__main__":
    main()
