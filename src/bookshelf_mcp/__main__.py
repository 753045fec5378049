"""
CLI entry point for the Bookshelf MCP server
"""

if __name__ == "__main__":
    from . import main

    main()
