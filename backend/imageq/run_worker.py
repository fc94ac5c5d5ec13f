"""
Entry point for the image worker process.

Drains the post queue and the binary queue in two threads, one delivery at
a time each. SIGINT/SIGTERM let the current deliveries finish, then exit.

    python -m imageq.run_worker
"""
import logging
import signal
import sys
import threading

from imageq.core.config import settings
from imageq.core.container import Services
from imageq.core.logging_config import setup_logging

logger = logging.getLogger("imageq.worker")


def run(services: Services, stop_event: threading.Event):
    consumers = services.consumers()

    # anything this worker had in flight when it last died goes back first
    for consumer in consumers:
        services.broker.recover(consumer.queue_name)

    threads = [
        threading.Thread(
            target=consumer.run,
            args=(stop_event,),
            name=f"consumer-{consumer.queue_name}",
            daemon=True,
        )
        for consumer in consumers
    ]
    for thread in threads:
        thread.start()

    logger.info(f"worker {services.broker.consumer_name} started, waiting for messages...")
    for thread in threads:
        thread.join()


def main():
    setup_logging(settings.LOG_LEVEL, settings.LOG_DIR, process_name="worker")
    stop_event = threading.Event()

    def _stop(signum, frame):
        logger.info(f"received signal {signum}, finishing current deliveries")
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    try:
        services = Services.from_settings(settings, with_uploader=True)
        services.open()
    except Exception as e:
        logger.critical(f"worker startup failed: {e}", exc_info=True)
        sys.exit(1)

    try:
        run(services, stop_event)
    finally:
        services.close()
        logger.info("worker stopped")


if __name__ == "__main__":
    main()
