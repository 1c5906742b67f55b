import asyncio

from jobqueue.worker.worker_main import main

asyncio.run(main())
