#!/usr/bin/env python3
"""
Run the CPA workflow run service.
"""

import os
import sys

from dotenv import load_dotenv


def main() -> None:
    # Make src importable
    repo_root = os.path.dirname(os.path.abspath(__file__))
    sys.path.insert(0, os.path.join(repo_root, "src"))
    load_dotenv(os.path.join(repo_root, ".env"))

    import uvicorn
    from config.settings import get_settings

    settings = get_settings()
    uvicorn.run(
        "web.app:app",
        host=os.getenv("HOST", settings.api_host),
        port=int(os.getenv("PORT", settings.api_port)),
        reload=not settings.is_production,
    )


if __name__ == "__main__":
    main()
