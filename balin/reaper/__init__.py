"""
Reaper module.
Contains the reaper that recovers jobs with stale locks.
"""

from balin.reaper.main import Reaper, run

__all__ = ["Reaper", "run"]
