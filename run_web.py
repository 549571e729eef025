#!/usr/bin/env python3
"""
Run the FastAPI app for the dental benefits wizard.
"""

import os
import sys


def main() -> None:
    # Make src importable
    repo_root = os.path.dirname(__file__)
    sys.path.insert(0, os.path.join(repo_root, "src"))

    import uvicorn

    from config.settings import get_settings

    settings = get_settings()
    uvicorn.run(
        "web.app:create_app",
        factory=True,
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        reload=not settings.is_production,
        log_config=None,
    )


if __name__ == "__main__":
    main()
