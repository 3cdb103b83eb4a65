"""
Bruno MCP - Bruno request collections as MCP tools.

Bruno MCP turns a directory of `.bru` request files into named tools:
- Discovers request files under a collection root (Discovery)
- Derives stable, collision-free tool names (Naming)
- Runs each call through the `bru` CLI and formats the report (Runner)
"""

__version__ = "0.1.0"
