import asyncio

from carbooking.worker.run import main

asyncio.run(main())
