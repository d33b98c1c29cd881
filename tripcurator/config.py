import os
import re

from dotenv import find_dotenv, load_dotenv


def _load_env_files() -> None:
    """
    Load .env files with this precedence:
    1) Base .env (if present)
    2) Explicit file via ENV_FILE (e.g., .env.dev)
    Existing OS environment variables are never overridden.
    """
    base_path = find_dotenv(".env", usecwd=True)
    if base_path:
        load_dotenv(base_path, override=False)

    explicit = os.environ.get("ENV_FILE")
    if explicit:
        explicit_path = explicit if os.path.isabs(explicit) else find_dotenv(explicit, usecwd=True)
        if explicit_path:
            load_dotenv(explicit_path, override=False)


_load_env_files()


def _get_int_env(var_name: str, default_value: int) -> int:
    """
    Parse an integer environment variable robustly.
    - Trims whitespace and trailing semicolons.
    - Falls back to the first integer found in the string.
    - Returns the provided default if parsing fails.
    """
    raw = os.environ.get(var_name, str(default_value))
    text = str(raw).strip().rstrip(";")
    try:
        return int(text)
    except ValueError:
        match = re.search(r"[-+]?\d+", text or "")
        if match:
            return int(match.group(0))
    return int(default_value)


def _get_float_env(var_name: str, default_value: float) -> float:
    raw = os.environ.get(var_name, str(default_value))
    try:
        return float(str(raw).strip().rstrip(";"))
    except ValueError:
        return float(default_value)


def _get_list_env(var_name: str, default_value: list[str]) -> list[str]:
    raw = os.environ.get(var_name, "").strip()
    if not raw:
        return list(default_value)
    return [item.strip() for item in raw.split(",") if item.strip()]


# === Server ===
APP_NAME = "tripcurator"
APP_VERSION = "0.1.0"
SERVER_HOST = os.environ.get("SERVER_HOST", "0.0.0.0")
SERVER_PORT = _get_int_env("SERVER_PORT", 8000)
CORS_ORIGINS = _get_list_env("TRIPCURATOR_ALLOWED_ORIGINS", ["*"])

# === Collaborator credentials ===
KAKAO_REST_API_KEY = os.environ.get("KAKAO_REST_API_KEY")
NAVER_CLIENT_ID = os.environ.get("NAVER_CLIENT_ID")
NAVER_CLIENT_SECRET = os.environ.get("NAVER_CLIENT_SECRET")
OPENWEATHER_API_KEY = os.environ.get("OPENWEATHER_API_KEY")
TMAP_API_KEY = os.environ.get("TMAP_API_KEY")
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4o-mini")

HTTP_TIMEOUT_SECONDS = _get_float_env("TRIPCURATOR_HTTP_TIMEOUT", 10.0)

# === Storage ===
DATA_DIR = os.environ.get("TRIPCURATOR_DATA_DIR", "./data")
ROUTES_FILE = os.path.join(DATA_DIR, "saved_routes.json")
ITINERARIES_FILE = os.path.join(DATA_DIR, "saved_itineraries.json")

# === Candidate fetch ===
DEFAULT_REGION = os.environ.get("TRIPCURATOR_DEFAULT_REGION", "서울")
BASE_RADIUS_METERS = _get_int_env("TRIPCURATOR_RADIUS_METERS", 8_000)
BASE_SIZE_PER_CATEGORY = 15  # Kakao page size limit
MAX_TOTAL_CANDIDATES = _get_int_env("TRIPCURATOR_MAX_CANDIDATES", 120)
AI_SEARCH_PAGES = 2
SEARCH_CENTER_DELTA = 0.25  # roughly 25-30 km in lat/lng

# === Rerank ===
MAX_CANDIDATES_IN_PROMPT = 30
POPULARITY_TOP_N_FOR_LLM = 30

# === List sizing / balancing ===
MAX_LIST_RESULTS = _get_int_env("TRIPCURATOR_MAX_RESULTS", 20)
MIN_LIST_RESULTS = _get_int_env("TRIPCURATOR_MIN_RESULTS", 15)
MIN_PER_CATEGORY = 3
TOP_PER_CATEGORY = 1
MIN_PER_NEIGHBORHOOD = 2
MIN_DISTANCE_BETWEEN_PLACES_METERS = _get_int_env("TRIPCURATOR_SPREAD_METERS", 1_500)
FINE_REGION_MAX_DISTANCE_METERS = 5_000

# Fused-score bonuses stay below one point combined so positional LLM scores
# (100, 99, 98 ...) are never reordered by them.
RATING_WEIGHT = 0.05
DISTANCE_WEIGHT = 25.0

# === Directions ===
WALKING_SPEED_MPS = 1.4
DIRECTIONS_DELAY_SECONDS = 0.1

# === Itinerary ===
ITINERARY_DAY_START_FLOOR = "10:00"
ITINERARY_GAP_MINUTES = 10
