"""
Standalone worker entry point.

Builds the worker from settings, checks the tool server, polls until
SIGINT/SIGTERM, then stops gracefully.

Dependencies: testgen.workers, testgen.configs, testgen.observability
System role: Worker process launcher
"""

import asyncio
import logging
import signal

from dotenv import load_dotenv

from testgen.configs import get_settings
from testgen.observability.logger import configure_logging
from testgen.workers.orchestrator_worker import OrchestratorWorker

logger = logging.getLogger(__name__)


async def main() -> None:
    load_dotenv()
    settings = get_settings()
    configure_logging(settings.log_level)

    worker = OrchestratorWorker.from_settings(settings)
    logger.info(
        f"{__name__}:main - environment={settings.environment} queue={settings.queue_type} "
        f"llm={settings.llm_provider} tools={settings.tools.server_url}"
    )

    tool_client = worker.tools.client
    if not await tool_client.health_check():
        logger.warning(f"{__name__}:main - Tool server is not healthy; jobs will retry until it is")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))

    await worker.start()
    try:
        await stop_event.wait()
    finally:
        await worker.stop()
        await worker.queue.disconnect()
        await tool_client.close()


if __name__ == "__main__":
    asyncio.run(main())
