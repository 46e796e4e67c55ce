"""
Rule constants for Quartet.

Quartet is played with 9 card types (one per tile of a 3x3 template image),
4 copies each. Four cards of one type form a set; the game ends once all
9 possible sets have been collected across the table.

Room-level limits come from config.py so they can be tuned per deployment.
"""

from config import config

# =============================================================================
# Deck & Sets
# =============================================================================

NUM_CARD_TYPES = 9
COPIES_PER_TYPE = 4
DECK_SIZE = NUM_CARD_TYPES * COPIES_PER_TYPE  # 36
CARDS_PER_SET = 4
HAND_SIZE = 4
WIN_SET_TOTAL = 9

# =============================================================================
# Spinner (turn-order animation)
# =============================================================================

SPINNER_MIN_DURATION_MS = 2400
SPINNER_DURATION_SPREAD_MS = 800

# =============================================================================
# Rooms & Players
# =============================================================================

MAX_PLAYERS = config.MAX_PLAYERS_PER_ROOM
MAX_NAME_LENGTH = 30
DEFAULT_PLAYER_NAME = "Player"
ROOM_CODE_LENGTH = config.ROOM_CODE_LENGTH
ROOM_TTL_MINUTES = config.ROOM_TTL_MINUTES
MAX_TEMPLATE_NAME_LENGTH = 80
