"""
Operations Layer

Business logic that composes database access into league workflows. Each
module owns one domain and its transactions:
- PlayerOperations: player registration and decks
- LobbyOperations: lobby lifecycle and the start countdown
- ReportOperations: player reports and moderation
- ContestOperations: themed deckbuilding contests

Match result workflows live next to the models in league.database.match_operations.
"""
