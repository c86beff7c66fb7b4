#!/usr/bin/env python3
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

print(
    f"[mcp] binary={os.environ.get('MCP_BRIDGE_BINARY', 'auto')} | "
    f"mode={os.environ.get('MCP_BRIDGE_MODE', 'launch')} | "
    f"port={os.environ.get('MCP_BRIDGE_PORT', '9223')} | "
    f"app={os.environ.get('MCP_BRIDGE_APP_URL', 'https://www.perplexity.ai/')}",
    file=sys.stderr,
)

from mcp_servers.chat_bridge.main import main  # noqa: E402

if __name__ == "__main__":
    main()
