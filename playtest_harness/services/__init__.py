# noqa
from playtest_harness.services.session_service import SessionService
from playtest_harness.services.turn_executor import TurnExecutor

__all__ = ["SessionService", "TurnExecutor"]
