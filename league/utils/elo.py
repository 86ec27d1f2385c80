import math
from typing import Dict, Iterable, Optional, Sequence, Tuple

from league.config import Config
from league.utils.exceptions import RatingInputError

class EloCalculator:
    """
    Multiplayer Elo approximation for four-player league matches.
    
    Each player is scored against the average of their three opponents with
    the classical logistic expectation; the actual score comes from a fixed
    placement table (1.0 / 0.66 / 0.33 / 0.0). The resulting deltas are not
    strictly zero-sum.
    """
    
    @staticmethod
    def calculate_expected_score(player_rating: float, opponent_rating: float) -> float:
        """
        Calculate the expected score for a player against an (average) opponent
        
        Args:
            player_rating: The player's current rating
            opponent_rating: The opponent's rating, or the average of several
            
        Returns:
            Expected score (0.0 to 1.0)
        """
        return 1 / (1 + math.pow(10, (opponent_rating - player_rating) / 400))
    
    @staticmethod
    def get_k_factor(games_played: int) -> int:
        """
        Get the K-factor based on number of games played
        
        Args:
            games_played: Number of matches the player (or deck) has played
            
        Returns:
            K-factor to use in the rating calculation
        """
        if games_played < Config.GAMES_UNTIL_EXPERIENCED:
            return Config.K_FACTOR_NEW
        return Config.K_FACTOR_EXPERIENCED
    
    @staticmethod
    def get_actual_score(placement: int) -> float:
        """Map a final placement (1-based) onto the actual score table"""
        if isinstance(placement, bool) or not isinstance(placement, int):
            raise RatingInputError(f"Placement must be an integer, got {placement!r}")
        if not 1 <= placement <= len(Config.PLACEMENT_SCORES):
            raise RatingInputError(
                f"Placement {placement} outside 1..{len(Config.PLACEMENT_SCORES)}"
            )
        return Config.PLACEMENT_SCORES[placement - 1]
    
    @staticmethod
    def calculate_rating_change(player_rating: int, opponent_ratings: Sequence[int],
                                placement: int, games_played: int) -> int:
        """
        Calculate the rating change for one participant of a finished match
        
        Args:
            player_rating: Player's rating before the match
            opponent_ratings: Ratings of the other three participants
            placement: Final placement of the player (1..4)
            games_played: Player's games played before the match, selects K
            
        Returns:
            Signed rating change, rounded half up to an integer
            
        Raises:
            RatingInputError: On a wrong opponent count, an out-of-range
                placement or a negative games count
        """
        expected_opponents = Config.LOBBY_CAPACITY - 1
        opponent_ratings = list(opponent_ratings)
        if len(opponent_ratings) != expected_opponents:
            raise RatingInputError(
                f"Expected {expected_opponents} opponent ratings, got {len(opponent_ratings)}"
            )
        if games_played < 0:
            raise RatingInputError(f"games_played cannot be negative ({games_played})")
        
        actual_score = EloCalculator.get_actual_score(placement)
        average_opponent = sum(opponent_ratings) / len(opponent_ratings)
        expected_score = EloCalculator.calculate_expected_score(player_rating, average_opponent)
        k_factor = EloCalculator.get_k_factor(games_played)
        
        return EloCalculator.round_half_up(k_factor * (actual_score - expected_score))
    
    @staticmethod
    def round_half_up(value: float) -> int:
        """Round to the nearest integer, halves towards positive infinity (not to even)"""
        return math.floor(value + 0.5)
    
    @staticmethod
    def calculate_match_rating_changes(entries: Dict[int, Tuple[int, int, int]]) -> Dict[int, int]:
        """
        Calculate rating changes for every participant of a match
        
        Args:
            entries: Mapping of participant id to (rating, games_played, placement)
            
        Returns:
            Mapping of participant id to rating change
        """
        changes = {}
        for participant_id, (rating, games_played, placement) in entries.items():
            opponents = [
                other_rating
                for other_id, (other_rating, _, _) in entries.items()
                if other_id != participant_id
            ]
            changes[participant_id] = EloCalculator.calculate_rating_change(
                rating, opponents, placement, games_played
            )
        return changes
    
    @staticmethod
    def get_tier(elo: int) -> str:
        """Name of the display tier a rating falls into"""
        for name, minimum, maximum in Config.ELO_TIERS:
            if minimum <= elo <= maximum:
                return name
        return Config.ELO_TIERS[0][0]
    
    @staticmethod
    def get_highest_rating(ratings: Iterable[Optional[int]]) -> int:
        """Highest rating of a collection, 0 when empty"""
        values = [r if r is not None else Config.STARTING_ELO for r in ratings]
        return max(values) if values else 0
    
    @staticmethod
    def format_elo_change(elo_change: int) -> str:
        """Format a rating change for display"""
        if elo_change > 0:
            return f"+{elo_change}"
        elif elo_change < 0:
            return str(elo_change)
        else:
            return "±0"
