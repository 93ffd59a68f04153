from timetrack.client.api import TimeTrackerAPI
from timetrack.client.config import ClientSettings
from timetrack.client.mutations import MutationCoordinator
from timetrack.client.retry import RetryPolicy
from timetrack.client.session import TimerController, TimerSession
from timetrack.client.sync_scheduler import ConnectionStatus, SyncScheduler
from timetrack.client.timer_engine import (ClientTimerEngine, ClientTimerState, ServerSnapshot, TimerState,
                                           format_clock)
