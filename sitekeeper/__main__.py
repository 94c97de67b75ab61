"""Entry point for `python -m sitekeeper`.

Usage:
    python -m sitekeeper
"""

from __future__ import annotations

import asyncio

from sitekeeper.app import main

asyncio.run(main())
