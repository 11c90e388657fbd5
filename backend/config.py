import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR / 'codeduel.db'}")

CODEFORCES_API_URL = os.getenv("CODEFORCES_API_URL", "https://codeforces.com/api").rstrip("/")
CODEFORCES_TIMEOUT_SECONDS = float(os.getenv("CODEFORCES_TIMEOUT_SECONDS", "10"))

# 0 disables the time limit
MATCH_TIME_LIMIT_MINUTES = int(os.getenv("MATCH_TIME_LIMIT_MINUTES", "60"))
MAX_UPDATE_RETRIES = int(os.getenv("MAX_UPDATE_RETRIES", "5"))
FORCE_CANCEL_SECRET = os.getenv("FORCE_CANCEL_SECRET")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]
PORT = int(os.getenv("PORT", "8000"))

PROBLEM_RATINGS = (800, 1200, 1400, 1600, 1800)
PROBLEMS_PER_GAME = 5
WIN_THRESHOLD = 5
