"""
Standalone entrypoint for running the sidecar controller.

Usage:
    python -m sidecar_controller [OPTIONS]
    sidecar-controller [OPTIONS]  (after pip install)

See ``sidecar-controller --help`` for the options and the environment
variables they fall back to.
"""

import asyncio
import logging
import signal
import sys

from sidecar_controller.cache import PodCache
from sidecar_controller.config import ControllerConfig, build_parser, load_config
from sidecar_controller.controller import SidecarController
from sidecar_controller.errors import StartupError
from sidecar_controller.executor import PodExecutor
from sidecar_controller.health import start_health_server
from sidecar_controller.kube import build_api_clients, verify_connection
from sidecar_controller.logging_config import setup_logging
from sidecar_controller.workqueue import RateLimitingQueue

logger = logging.getLogger(__name__)


async def run_controller(config: ControllerConfig) -> None:
    """
    Initialize and run the sidecar controller.

    Args:
        config: Resolved controller configuration

    Runs until SIGINT or SIGTERM, then stops accepting work and returns
    once in-flight items have finished.

    Raises:
        StartupError: If no working cluster client can be built
    """
    logger.info("Initializing sidecar controller")
    logger.info(f"  Kubeconfig: {config.kubeconfig or '(in-cluster)'}")
    logger.info(f"  Annotation key: {config.annotation_key}")
    logger.info(f"  Namespace: {config.namespace or '(all)'}")
    logger.info(f"  Workers: {config.workers}")

    clients = build_api_clients(config.kubeconfig)
    try:
        await asyncio.to_thread(verify_connection, clients.rest)

        queue = RateLimitingQueue()
        cache = PodCache(clients.core_api, namespace=config.namespace)
        executor = PodExecutor(clients.stream_core_api, timeout=config.exec_timeout)
        controller = SidecarController(
            cache=cache,
            queue=queue,
            executor=executor,
            annotation_key=config.annotation_key,
            max_retries=config.max_retries,
            workers=config.workers,
            sync_timeout=config.sync_timeout,
        )

        shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()

        def signal_handler(sig: signal.Signals) -> None:
            logger.info(f"Received signal {sig.name}, shutting down")
            shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler, sig)

        health_task: asyncio.Task | None = None
        health_server = None
        if config.health_port > 0:
            health_server, health_task = await start_health_server(controller, config.health_port)
            logger.info(f"Health endpoints listening on port {config.health_port}")

        try:
            await controller.start()
            await shutdown_event.wait()
        finally:
            await controller.stop()
            if health_server is not None and health_task is not None:
                health_server.should_exit = True
                await health_task
            logger.info("Controller stopped cleanly")
    finally:
        clients.close()


def main() -> int:
    """
    Main entrypoint for the controller.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = build_parser().parse_args()
    config = load_config(args)
    setup_logging(config.log_level, config.log_format)

    try:
        asyncio.run(run_controller(config))
        return 0
    except StartupError as e:
        logger.error(f"Cannot start controller: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
