"""Per-user notification rate limiting."""

import logging
import threading
from dataclasses import dataclass, field
from typing import Optional

from .clock import Clock, SystemClock
from .notification_config import NotificationsConfig

logger = logging.getLogger(__name__)


@dataclass
class SuppressionState:
    """Recent admissions for one user.

    Attributes:
        admissions: Admission times (ms) inside the window
        suppressed_until: End of the current cooldown, if any
    """

    admissions: list[int] = field(default_factory=list)
    suppressed_until: Optional[int] = None


class UserSuppressor:
    """Limits how many notifications one user can trigger per window.

    A user who reaches `max_notifications_per_user` admissions inside
    `suppression_window_ms` is muted for `suppression_duration_ms`.
    """

    def __init__(
        self,
        config: NotificationsConfig,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.clock = clock or SystemClock()
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._users: dict[str, SuppressionState] = {}
        self._rejected_total = 0

    def update_config(self, config: NotificationsConfig) -> None:
        self.config = config

    def admit(self, user_id: str, notification_type: str) -> bool:
        """Check the user's rate limit and record the admission if allowed.

        Args:
            user_id: User the notification is for
            notification_type: Notification type (for logging)

        Returns:
            True if the notification may be shown
        """
        general = self.config.general
        if not general.user_suppression_enabled:
            return True

        user_id = str(user_id)
        with self._lock:
            now = self.clock.now_ms()
            state = self._users.setdefault(user_id, SuppressionState())

            if state.suppressed_until is not None:
                if now < state.suppressed_until:
                    self._rejected_total += 1
                    self.logger.debug(
                        f"Blocked {notification_type} for {user_id}: suppressed until {state.suppressed_until}"
                    )
                    return False
                state.suppressed_until = None

            cutoff = now - general.suppression_window_ms
            state.admissions = [t for t in state.admissions if t > cutoff]

            if len(state.admissions) >= general.max_notifications_per_user:
                state.suppressed_until = now + general.suppression_duration_ms
                self._rejected_total += 1
                self.logger.info(
                    f"Suppressing {user_id} for {general.suppression_duration_ms}ms: "
                    f"{len(state.admissions)} notifications in {general.suppression_window_ms}ms"
                )
                return False

            state.admissions.append(now)
            return True

    def is_suppressed(self, user_id: str) -> bool:
        """True while the user is inside a cooldown."""
        with self._lock:
            state = self._users.get(str(user_id))
            if state is None or state.suppressed_until is None:
                return False
            return self.clock.now_ms() < state.suppressed_until

    def cleanup(self) -> int:
        """Drop expired admissions and cooldowns. Returns users removed."""
        general = self.config.general
        with self._lock:
            now = self.clock.now_ms()
            cutoff = now - general.suppression_window_ms
            idle = []
            for user_id, state in self._users.items():
                state.admissions = [t for t in state.admissions if t > cutoff]
                if state.suppressed_until is not None and now >= state.suppressed_until:
                    state.suppressed_until = None
                if not state.admissions and state.suppressed_until is None:
                    idle.append(user_id)
            for user_id in idle:
                del self._users[user_id]
        if idle:
            self.logger.debug(f"Suppression cleanup removed {len(idle)} idle users")
        return len(idle)

    def get_statistics(self) -> dict:
        with self._lock:
            now = self.clock.now_ms()
            return {
                "tracked_users": len(self._users),
                "suppressed_users": sum(
                    1
                    for s in self._users.values()
                    if s.suppressed_until is not None and now < s.suppressed_until
                ),
                "rejected_total": self._rejected_total,
            }
