"""PDH league core: lobbies, match validation, Elo ratings and leaderboards."""

__version__ = "0.1.0"
