"""Entry point: ``python -m anonbot``."""

import asyncio

from anonbot.app import main

if __name__ == "__main__":
    asyncio.run(main())
