"""
Questline - server entry point
python -m questline.core
"""
import asyncio
from .system import main

if __name__ == "__main__":
    asyncio.run(main())
