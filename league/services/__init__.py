"""
Services package for the PDH league core.
"""

from .base import BaseService
from .change_feed import ChangeEvent, ChangeFeed, Subscription
from .leaderboard import LeaderboardService

__all__ = ['BaseService', 'ChangeEvent', 'ChangeFeed', 'Subscription', 'LeaderboardService']
