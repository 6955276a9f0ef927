"""Pytest configuration and fixtures."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from streamnotify.clock import ManualClock
from streamnotify.dispatcher import SideEffectDispatcher
from streamnotify.display_queue import DisplayQueue
from streamnotify.notification_config import NotificationsConfig, parse_notification_config
from streamnotify.notification_manager import NotificationManager
from streamnotify.spam_detector import DonationSpamDetector
from streamnotify.suppression import UserSuppressor

START_MS = 1_700_000_000_000


@pytest.fixture
def clock():
    """Manual clock starting at a fixed time."""
    return ManualClock(START_MS)


@pytest.fixture
def config():
    """Default notification config."""
    return NotificationsConfig()


@pytest.fixture
def queue():
    """Empty display queue."""
    return DisplayQueue()


@pytest.fixture
def tts_sink():
    sink = MagicMock()
    sink.speak = AsyncMock()
    return sink


@pytest.fixture
def effects_sink():
    sink = MagicMock()
    sink.get_vfx_config = AsyncMock(return_value=None)
    return sink


@pytest.fixture
def goals_sink():
    sink = MagicMock()
    sink.process_donation_goal = AsyncMock()
    return sink


@pytest.fixture
def dispatcher(tts_sink, effects_sink, goals_sink):
    """Dispatcher with mocked sinks."""
    return SideEffectDispatcher(tts_sink=tts_sink, effects_sink=effects_sink, goals_sink=goals_sink)


@pytest.fixture
def make_manager(clock, dispatcher):
    """Build a manager with real spam detection and suppression."""

    def _make(config, display_sink):
        return NotificationManager(
            config,
            display_sink,
            clock=clock,
            spam_detector=DonationSpamDetector(config, clock),
            suppressor=UserSuppressor(config, clock),
            dispatcher=dispatcher,
        )

    return _make


@pytest.fixture
def manager(make_manager, config, queue):
    """Notification manager wired to a real queue and mocked sinks."""
    return make_manager(config, queue)


@pytest.fixture
def make_config():
    """Build a config from a partial mapping."""

    def _make(**sections):
        return parse_notification_config(sections)

    return _make
