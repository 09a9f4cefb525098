"""
Constants used across the competition and presence engine.
"""

# Geofence thresholds (meters). Check-out radius is larger than check-in
# radius so a player hovering near the edge does not flap in and out.
AUTO_CHECK_IN_RADIUS_M = 200
AUTO_CHECK_OUT_RADIUS_M = 300
MAX_CHECK_IN_DISTANCE_M = 500
STALE_PRESENCE_HOURS = 2
HEARTBEAT_INTERVAL_SECONDS = 60

# Match rewards
BASE_XP = 50
WIN_BONUS_XP = 50
MAX_MARGIN_BONUS_XP = 100
MARGIN_XP_PER_POINT = 10
BASE_WINNER_RP = 20
MARGIN_RP_PER_POINT = 2
MAX_WINNER_RP = 50
LOSER_XP = BASE_XP

# Levels / cards
XP_PER_LEVEL = 100
TOTAL_CHALLENGES = 13

# Label used for the global (venue-scope) crown
GLOBAL_SCOPE_NAME = "Global"
