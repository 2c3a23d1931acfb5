import asyncio, logging, signal, sys
from n2kbridge.config import BridgeConfig
from n2kbridge.device_registry import DeviceRegistry
from n2kbridge.meta_store import MetaStore
from n2kbridge.mqtt import Mqtt
from n2kbridge.pipeline import DeltaPipeline
from n2kbridge.signalk import SignalKClient

log = logging.getLogger(__name__)


class BridgeApp:
    """
    Signal K -> Home Assistant bridge.
    Topics:
      - <prefix>/sensor/n2k_src_<source>/<sensor>/config   -> retained discovery config
      - <prefix>/sensor/n2k_src_<source>/<sensor>/state    -> sensor state
    Deltas are dropped until the device registry fetch has finished (or
    failed, or timed out) after each Signal K connection.
    """
    def __init__(self, cfg: BridgeConfig):
        self.cfg = cfg
        self._configure_logging()
        self.mqtt = Mqtt(cfg.mqtt)
        self.registry = DeviceRegistry(cfg.signalk)
        self.meta_store = MetaStore(cfg.signalk)
        self.pipeline = DeltaPipeline(cfg, self.mqtt, registry=self.registry, meta_store=self.meta_store)
        self.signalk = SignalKClient(cfg.signalk, self.pipeline.handle_delta, on_connect=self.init_collaborators)
        self._stop = asyncio.Event()

    def _configure_logging(self):
        """Configure logging based on config settings."""
        log_config = self.cfg.logging
        root_logger = logging.getLogger()
        log_level = getattr(logging, log_config.level.upper())
        root_logger.setLevel(log_level)

        if not root_logger.handlers:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(log_level)
            console_handler.setFormatter(logging.Formatter(log_config.format))
            root_logger.addHandler(console_handler)

        logging.getLogger("n2kbridge").setLevel(log_level)
        # aiohttp and paho are chatty at INFO/DEBUG and not actionable here
        logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
        logging.getLogger("paho").setLevel(logging.WARNING)

        if log_config.ha_debug:
            logging.getLogger("n2kbridge.ha").setLevel(logging.DEBUG)
            logging.getLogger("n2kbridge.ha.discovery").setLevel(logging.DEBUG)

        log.info(f"Logging configured - Level: {log_config.level}, HA Debug: {log_config.ha_debug}")

    async def init_collaborators(self) -> None:
        """Fetch device registry and path metadata, then let deltas through.

        Both fetches carry their own timeout; the extra wait_for bounds the
        pair in case a server accepts the connection and then stalls.
        """
        log.info("Fetching device information from Signal K...")
        limit = max(self.cfg.signalk.registry_timeout_secs, self.cfg.signalk.meta_timeout_secs) + 1.0
        try:
            await asyncio.wait_for(
                asyncio.gather(self.registry.fetch_devices(), self.meta_store.fetch()),
                timeout=limit,
            )
        except asyncio.TimeoutError:
            log.warning("Signal K metadata fetch timed out; continuing without device metadata")
        except Exception as e:
            log.warning(f"Could not fetch device registry from Signal K: {e}; continuing without device metadata")
        finally:
            self.pipeline.mark_ready()

    def _log_startup(self):
        c = self.cfg
        log.info("N2K HA Bridge starting...")
        log.info(f"Signal K server: {c.signalk.host}:{c.signalk.port}")
        log.info(f"MQTT broker: {c.mqtt.host}:{c.mqtt.port}")
        log.info(f"MQTT auth: {'enabled (user: ' + c.mqtt.username + ')' if c.mqtt.username else 'disabled'}")
        log.info(f"Home Assistant discovery prefix: {c.homeassistant.discovery_prefix}")
        log.info(f"Unit mode: {'raw (debug)' if c.raw_mode else 'auto (converted)'}")
        log.info(f"Configured sensors: {len(c.sensors)}, publish throttle: {c.publish_throttle_ms} ms")

    async def run(self) -> None:
        self._log_startup()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except NotImplementedError:  # Windows event loops
                pass
        stream_task = asyncio.create_task(self.signalk.run())
        stream_task.add_done_callback(lambda _t: self.stop())
        try:
            await self._stop.wait()
        finally:
            log.info("Shutting down...")
            self.signalk.stop()
            stream_task.cancel()
            try:
                await stream_task
            except asyncio.CancelledError:
                pass
            log.info(f"Pipeline stats: {self.pipeline.stats}")
            self.mqtt.close()

    def stop(self) -> None:
        self._stop.set()
