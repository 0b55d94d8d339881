from .auth import User, SessionToken
from .catalog import Content, Place
from .checkins import CheckinRecord, PointBalance, PointHistoryEntry

__all__ = [
    'User', 'SessionToken',
    'Content', 'Place',
    'CheckinRecord', 'PointBalance', 'PointHistoryEntry',
]
