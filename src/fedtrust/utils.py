from cryptojwt.jwt import utc_time_sans_frac


class SystemClock(object):
    """Seconds since the epoch, UTC."""

    def now(self) -> int:
        return utc_time_sans_frac()


class FixedClock(object):
    """A clock that always returns the same time."""

    def __init__(self, timestamp: int):
        self.timestamp = timestamp

    def now(self) -> int:
        return self.timestamp
