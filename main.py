import asyncio
import logging
import signal
import sys

import uvicorn

from possync.bootstrap import build_services
from possync.config import SyncConfig, configure_logging
from possync.network.ws_local import StatusBridge
from possync.status_app.app import create_app

logger = logging.getLogger("Main")

HEARTBEAT_INTERVAL = 10


async def heartbeat_loop(services, once=False):
    """Feed connectivity transitions to the network monitor."""
    while True:
        if await services.api.heartbeat():
            services.monitor.on_heartbeat_success()
        else:
            services.monitor.on_heartbeat_failure("server unreachable")
        if once:
            return
        await asyncio.sleep(HEARTBEAT_INTERVAL)


async def run(config: SyncConfig, once: bool = False):
    print("=== POS Offline Sync Core ===")
    print(f"[*] Server: {config.server_url}")
    print(f"[*] Local store: {config.db_path}")

    services = build_services(config)
    coordinator = services.coordinator
    coordinator.initialize()

    bridge = StatusBridge(coordinator, port=config.status_bridge_port)
    await bridge.start()

    server = uvicorn.Server(uvicorn.Config(
        create_app(coordinator),
        host="127.0.0.1",
        port=config.status_api_port,
        log_level="info",
    ))
    # Signals are handled below
    server.install_signal_handlers = lambda: None

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass

    heartbeat = asyncio.create_task(heartbeat_loop(services, once=once))
    api_task = asyncio.create_task(server.serve())

    print(f"[*] Status API on http://127.0.0.1:{config.status_api_port}")
    print(f"[*] Status bridge on ws://127.0.0.1:{config.status_bridge_port}")

    try:
        if once:
            await heartbeat
            await coordinator.sync_manager.perform_full_sync()
            print(f"[*] Status: {coordinator.get_status().to_dict()}")
        else:
            await stop_event.wait()
    finally:
        print("\n[!] Shutting down...")
        heartbeat.cancel()
        server.should_exit = True
        await api_task
        await bridge.stop()
        coordinator.shutdown()


def main():
    configure_logging()
    config = SyncConfig.from_env()

    if not config.api_token:
        print("[!] POS_API_TOKEN is not set; requests will be unauthenticated.")

    try:
        asyncio.run(run(config, once="--once" in sys.argv))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
