import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """League configuration settings"""
    
    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///league.db')
    
    # Runtime settings
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_RETENTION_DAYS = int(os.getenv('LOG_RETENTION_DAYS', 7))
    
    # Realtime mirror (optional)
    REDIS_URL = os.getenv('REDIS_URL')
    REDIS_ENABLED = os.getenv('REDIS_ENABLED', 'False').lower() == 'true'
    
    # Elo calculation settings
    STARTING_ELO = 1000
    K_FACTOR_NEW = 32            # Fewer than GAMES_UNTIL_EXPERIENCED games
    K_FACTOR_EXPERIENCED = 24
    GAMES_UNTIL_EXPERIENCED = 30
    
    # Actual score by placement (1st..4th)
    PLACEMENT_SCORES = (1.0, 0.66, 0.33, 0.0)
    
    # Lobby settings
    LOBBY_CAPACITY = 4
    LOBBY_COUNTDOWN_SECONDS = float(os.getenv('LOBBY_COUNTDOWN_SECONDS', 3))
    LOBBY_CODE_LENGTH = 6
    LOBBY_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
    
    # Leaderboard settings
    LEADERBOARD_LIMIT = 50
    LEADERBOARD_CACHE_TTL = float(os.getenv('LEADERBOARD_CACHE_TTL', 30))
    
    # Deck rating tiers
    ELO_TIERS = (
        ('Bronze', 0, 799),
        ('Silver', 800, 999),
        ('Gold', 1000, 1199),
        ('Platinum', 1200, 1299),
        ('Diamond', 1300, 1399),
        ('Mythic', 1400, 99999),
    )
    
    @classmethod
    def get_async_database_url(cls, database_url: str = None) -> str:
        """Rewrite a plain sqlite URL to its aiosqlite form"""
        url = database_url or cls.DATABASE_URL
        if url.startswith('sqlite:///'):
            url = url.replace('sqlite:///', 'sqlite+aiosqlite:///')
        return url
    
    @classmethod
    def validate(cls):
        """Validate that the configuration is internally consistent"""
        if len(cls.PLACEMENT_SCORES) != cls.LOBBY_CAPACITY:
            raise ValueError("PLACEMENT_SCORES must have one entry per lobby seat")
        if cls.K_FACTOR_NEW <= 0 or cls.K_FACTOR_EXPERIENCED <= 0:
            raise ValueError("K factors must be positive")
        if cls.LOBBY_COUNTDOWN_SECONDS < 0:
            raise ValueError("LOBBY_COUNTDOWN_SECONDS cannot be negative")
        if cls.REDIS_ENABLED and not cls.REDIS_URL and not cls.DEBUG:
            raise ValueError("REDIS_URL is required when REDIS_ENABLED is set outside debug mode")
