"""
Scoring oracle for recorded 1v1 matches.

This service handles:
- The oracle interface the match lifecycle depends on (analyze(media_ref) -> result dict)
- A Google Gemini video implementation (File API upload + structured JSON output)
- Response parsing/normalization into a score pair and confidence
- A bounded-retry driver with a per-attempt timeout
"""

import asyncio
import json
import logging
import os
import tempfile
from typing import Any, Dict, Optional, Tuple

import httpx

from kingofcourt.services.errors import OracleFailure

logger = logging.getLogger(__name__)

# Configuration
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
SCORING_MODEL = os.getenv("SCORING_MODEL", "gemini-2.0-flash")
ORACLE_MAX_ATTEMPTS = int(os.getenv("ORACLE_MAX_ATTEMPTS", "3"))
ORACLE_TIMEOUT_SECONDS = float(os.getenv("ORACLE_TIMEOUT_SECONDS", "120"))
ORACLE_RETRY_DELAY_SECONDS = float(os.getenv("ORACLE_RETRY_DELAY_SECONDS", "2"))
MEDIA_FETCH_TIMEOUT_SECONDS = 60.0

MATCH_ANALYSIS_PROMPT = """You are scoring a recorded 1v1 basketball match.
Player 1 is the challenger, player 2 is the opponent.
Count every made basket for each player and every shot attempt.
Respond with a single JSON object:
{"player1Score": int, "player2Score": int,
 "player1ShotsMade": int, "player1ShotsAttempted": int,
 "player2ShotsMade": int, "player2ShotsAttempted": int,
 "durationSeconds": int, "confidence": float between 0 and 1}"""

ANALYSIS_JSON_SCHEMA = {
    "type": "object",
    "properties": {
        "player1Score": {"type": "integer"},
        "player2Score": {"type": "integer"},
        "player1ShotsMade": {"type": "integer"},
        "player1ShotsAttempted": {"type": "integer"},
        "player2ShotsMade": {"type": "integer"},
        "player2ShotsAttempted": {"type": "integer"},
        "durationSeconds": {"type": "integer"},
        "confidence": {"type": "number"},
    },
    "required": ["player1Score", "player2Score", "confidence"],
}

# Results below this confidence are not trusted to settle a match
MIN_CONFIDENCE = float(os.getenv("ORACLE_MIN_CONFIDENCE", "0.3"))

# Gemini client (singleton); type is Any to allow lazy import
_gemini_client: Any = None


def get_gemini_client():
    """Get or create Gemini client. Lazy-imports google.genai to avoid import-time dependency."""
    global _gemini_client
    if _gemini_client is None:
        if not GEMINI_API_KEY:
            raise OracleFailure("GEMINI_API_KEY or GOOGLE_API_KEY environment variable is not set")
        from google import genai
        # Bound each HTTP request too; a cancelled await does not stop the worker thread
        _gemini_client = genai.Client(
            api_key=GEMINI_API_KEY,
            http_options={"timeout": int(ORACLE_TIMEOUT_SECONDS * 1000)},
        )
    return _gemini_client


# ============================================================================
# Response parsing
# ============================================================================

_FIELD_MAP = {
    "player1Score": "player1_score",
    "player2Score": "player2_score",
    "player1ShotsMade": "player1_shots_made",
    "player1ShotsAttempted": "player1_shots_attempted",
    "player2ShotsMade": "player2_shots_made",
    "player2ShotsAttempted": "player2_shots_attempted",
    "durationSeconds": "duration_seconds",
    "confidence": "confidence",
}


def _extract_json_object(text: str) -> Dict:
    """Find and parse the outermost JSON object in a model response."""
    if not text or not text.strip():
        raise OracleFailure("Empty oracle response")
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        raise OracleFailure(f"No JSON object in oracle response: {text[:200]}")
    try:
        parsed = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise OracleFailure(f"Unparseable oracle response: {e}")
    if not isinstance(parsed, dict):
        raise OracleFailure("Oracle response is not a JSON object")
    return parsed


def normalize_analysis_result(raw: Dict) -> Dict:
    """
    Validate and normalize an oracle result.

    Accepts camelCase (model output) or snake_case keys. Scores must be
    non-negative integers and confidence must lie in [0, 1].

    Args:
        raw: Raw result dict

    Returns:
        Dict with player1_score, player2_score, confidence and optional shot
        counters / duration_seconds

    Raises:
        OracleFailure: If the result is unusable
    """
    normalized: Dict[str, Any] = {}
    for key, value in raw.items():
        target = _FIELD_MAP.get(key, key)
        if target in _FIELD_MAP.values():
            normalized[target] = value

    for field in ("player1_score", "player2_score", "confidence"):
        if normalized.get(field) is None:
            raise OracleFailure(f"Oracle result is missing {field}")

    try:
        for field in list(normalized):
            if field == "confidence":
                normalized[field] = float(normalized[field])
            elif normalized[field] is not None:
                normalized[field] = int(normalized[field])
    except (TypeError, ValueError):
        raise OracleFailure("Oracle result has non-numeric fields")

    if normalized["player1_score"] < 0 or normalized["player2_score"] < 0:
        raise OracleFailure("Oracle returned a negative score")
    if not 0.0 <= normalized["confidence"] <= 1.0:
        raise OracleFailure(f"Oracle confidence out of range: {normalized['confidence']}")
    if normalized["confidence"] < MIN_CONFIDENCE:
        raise OracleFailure(
            f"Oracle confidence {normalized['confidence']:.2f} below minimum {MIN_CONFIDENCE:.2f}"
        )
    return normalized


def parse_analysis_response(text: str) -> Dict:
    """Parse a model response into a normalized oracle result."""
    return normalize_analysis_result(_extract_json_object(text))


# ============================================================================
# Oracle implementations
# ============================================================================


class ScoringOracle:
    """Interface: analyze a match recording and return a normalized result."""

    async def analyze(self, media_ref: str) -> Dict:
        raise NotImplementedError


class GeminiScoringOracle(ScoringOracle):
    """Scores match videos with Gemini via the File API."""

    def __init__(self, model: str = SCORING_MODEL):
        self.model = model

    async def _fetch_media(self, media_ref: str) -> Tuple[bytes, str]:
        async with httpx.AsyncClient(timeout=MEDIA_FETCH_TIMEOUT_SECONDS) as client:
            resp = await client.get(media_ref)
            resp.raise_for_status()
            content_type = resp.headers.get("content-type", "video/mp4").split(";")[0]
            return resp.content, content_type

    def _generate(self, video_bytes: bytes, content_type: str) -> str:
        """Upload the video and run the scoring prompt (sync; run in a thread)."""
        client = get_gemini_client()
        with tempfile.NamedTemporaryFile(suffix=".video") as tmp:
            tmp.write(video_bytes)
            tmp.flush()
            uploaded = client.files.upload(file=tmp.name, config={"mime_type": content_type})
        response = client.models.generate_content(
            model=self.model,
            contents=[uploaded, MATCH_ANALYSIS_PROMPT],
            config={
                "response_mime_type": "application/json",
                "response_json_schema": ANALYSIS_JSON_SCHEMA,
            },
        )
        return getattr(response, "text", None) or ""

    async def analyze(self, media_ref: str) -> Dict:
        if not media_ref:
            raise OracleFailure("Match has no recording to analyze")
        logger.info(f"Fetching match recording {media_ref}")
        try:
            video_bytes, content_type = await self._fetch_media(media_ref)
        except httpx.HTTPError as e:
            raise OracleFailure(f"Failed to fetch recording: {e}")
        logger.info(f"Uploading {len(video_bytes)} bytes ({content_type}) to Gemini")
        text = await asyncio.to_thread(self._generate, video_bytes, content_type)
        logger.debug(f"Gemini response: {text[:500]}")
        return parse_analysis_response(text)


async def analyze_with_retries(
    oracle: ScoringOracle,
    media_ref: str,
    max_attempts: int = ORACLE_MAX_ATTEMPTS,
    timeout_seconds: float = ORACLE_TIMEOUT_SECONDS,
    retry_delay_seconds: float = ORACLE_RETRY_DELAY_SECONDS,
) -> Tuple[Optional[Dict], int, Optional[str]]:
    """
    Call the oracle a bounded number of times.

    Each attempt is cut off after ``timeout_seconds``. Failures of any kind
    (timeout, transport error, unusable response) count as an attempt.

    The cutoff only stops waiting. Blocking SDK work already handed to a
    thread (see ``GeminiScoringOracle._generate``) keeps running until the
    client's own request timeout ends it.

    Args:
        oracle: Scoring oracle
        media_ref: Reference to the match recording
        max_attempts: Maximum number of oracle calls
        timeout_seconds: Per-attempt timeout
        retry_delay_seconds: Base delay between attempts (doubles each retry)

    Returns:
        Tuple of (result or None, attempts made, last error message or None)
    """
    last_error: Optional[str] = None
    for attempt in range(1, max_attempts + 1):
        try:
            raw = await asyncio.wait_for(oracle.analyze(media_ref), timeout=timeout_seconds)
            return normalize_analysis_result(raw), attempt, None
        except asyncio.TimeoutError:
            last_error = f"Oracle timed out after {timeout_seconds:.0f}s"
        except OracleFailure as e:
            last_error = str(e)
        except Exception as e:
            last_error = f"Oracle error: {e}"
            logger.error(f"Unexpected scoring oracle error: {e}", exc_info=True)

        logger.warning(f"Scoring attempt {attempt}/{max_attempts} failed: {last_error}")
        if attempt < max_attempts and retry_delay_seconds > 0:
            await asyncio.sleep(retry_delay_seconds * (2 ** (attempt - 1)))

    return None, max_attempts, last_error


# Global singleton, replaceable for tests or alternative providers
_scoring_oracle: Optional[ScoringOracle] = None


def get_scoring_oracle() -> ScoringOracle:
    """Get the global scoring oracle instance."""
    global _scoring_oracle
    if _scoring_oracle is None:
        _scoring_oracle = GeminiScoringOracle()
    return _scoring_oracle


def set_scoring_oracle(oracle: Optional[ScoringOracle]) -> None:
    """Replace the global scoring oracle (None restores the default)."""
    global _scoring_oracle
    _scoring_oracle = oracle
