"""Stream notification service.

Wires the notification pipeline to its sinks and runs the housekeeping jobs.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .clock import Clock, SystemClock
from .config import Settings, get_settings
from .display_queue import DisplayQueue, OverlayRenderer
from .dispatcher import SideEffectDispatcher, TTSSink
from .events import Platform
from .notification_config import NotificationsConfig, load_notification_config
from .notification_manager import NotificationManager
from .sinks import ConfigEffectsSink, GoalTracker, HttpOverlayRenderer, HttpTTSSink
from .spam_detector import DonationSpamDetector
from .suppression import UserSuppressor
from .transport import ReplayTransport

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging the same way for every entry point."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class NotificationService:
    """Owns one pipeline: queue, filters, sinks and the scheduler."""

    def __init__(
        self,
        config: NotificationsConfig,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        renderer: Optional[OverlayRenderer] = None,
        tts_sink: Optional[TTSSink] = None,
    ):
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()

        if renderer is None and self.settings.overlay_url:
            renderer = HttpOverlayRenderer(self.settings.overlay_url, self.settings.http_timeout_seconds)
        if tts_sink is None and self.settings.tts_url:
            tts_sink = HttpTTSSink(self.settings.tts_url, self.settings.http_timeout_seconds)
        self.renderer = renderer
        self.tts_sink = tts_sink

        self.queue = DisplayQueue(
            max_queue_size=config.display.max_queue_size,
            chat_optimization=config.display.chat_optimization,
        )
        self.goals = GoalTracker()
        self.dispatcher = SideEffectDispatcher(
            tts_sink=tts_sink,
            effects_sink=ConfigEffectsSink(config.vfx),
            goals_sink=self.goals,
            sink_timeout_ms=self.settings.sink_timeout_ms,
        )
        self.manager = NotificationManager(
            config,
            self.queue,
            clock=self.clock,
            spam_detector=DonationSpamDetector(config, self.clock),
            suppressor=UserSuppressor(config, self.clock),
            dispatcher=self.dispatcher,
        )
        self.transports: dict[Platform, ReplayTransport] = {}
        self.scheduler = AsyncIOScheduler()
        self._consumer: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs) -> "NotificationService":
        """Load the notification config named in settings and build a service.

        Raises:
            ConfigError: If the config file is invalid
        """
        settings = settings or get_settings()
        config = load_notification_config(Path(settings.notification_config_path))
        return cls(config, settings=settings, **kwargs)

    def transport(self, platform: "str | Platform") -> ReplayTransport:
        """Get (or create and attach) the transport for a platform."""
        platform = Platform.parse(platform)
        if platform not in self.transports:
            transport = ReplayTransport(platform)
            self.manager.attach_transport(transport)
            self.transports[platform] = transport
        return self.transports[platform]

    async def start(self) -> None:
        """Start housekeeping jobs and the overlay consumer."""
        config = self.manager.config
        self.scheduler.add_job(
            self.manager.cleanup,
            "interval",
            seconds=config.general.suppression_cleanup_interval_ms / 1000,
            id="cleanup",
        )
        self.scheduler.add_job(
            self.manager.flush_aggregations,
            "interval",
            seconds=self.settings.aggregation_flush_seconds,
            id="flush_aggregations",
        )
        self.scheduler.start()
        logger.info("Scheduler started")

        if self.renderer is not None:
            self._consumer = asyncio.create_task(self.queue.run(self.renderer))

    async def stop(self) -> None:
        """Flush pending work and shut down."""
        logger.info("Stopping notification service...")
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            # AsyncIOScheduler finishes shutting down on the next loop iteration
            await asyncio.sleep(0)
        await self.manager.flush_aggregations()
        await self.manager.shutdown()

        if self._consumer is not None:
            # Don't wait out the on-screen duration of the current item
            self.queue.stop()
            self._consumer.cancel()
            await asyncio.gather(self._consumer, return_exceptions=True)
            self._consumer = None

        for sink in (self.renderer, self.tts_sink):
            if isinstance(sink, (HttpOverlayRenderer, HttpTTSSink)):
                await sink.close()
        logger.info("Notification service stopped")

    def reload_config(self, config_path: Optional[Path] = None) -> NotificationsConfig:
        """Re-read the config file and hot-swap it into the pipeline.

        Raises:
            ConfigError: If the new file is invalid (the old config stays active)
        """
        path = config_path or Path(self.settings.notification_config_path)
        config = load_notification_config(path)
        self.manager.replace_config(config)
        self.dispatcher.effects_sink = ConfigEffectsSink(config.vfx)
        return config
