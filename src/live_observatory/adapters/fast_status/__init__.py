"""Fast status adapter package.

Answers "is this channel live?" from the channel ``/live`` page alone: a
redirect to a watch URL means a broadcast is running.  Cheapest probe in the
set; it reports liveness and little else.
"""

from live_observatory.adapters.fast_status.adapter import FastStatusAdapter

__all__ = ["FastStatusAdapter"]
