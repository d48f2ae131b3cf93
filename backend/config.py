import os
from dotenv import load_dotenv

load_dotenv()

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-5")
ORACLE_MAX_TOKENS = int(os.getenv("ORACLE_MAX_TOKENS", "1024"))
ORACLE_TIMEOUT_SECONDS = float(os.getenv("ORACLE_TIMEOUT_SECONDS", "30"))

DATABASE_PATH = os.getenv("TASKS_DB_PATH", "tasks.db")

# Minimum fraction of query terms a task must contain to count as a search hit
SEARCH_MATCH_THRESHOLD = float(os.getenv("SEARCH_MATCH_THRESHOLD", "0.5"))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",") if o.strip()]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def api_key_configured() -> bool:
    return bool(ANTHROPIC_API_KEY) and ANTHROPIC_API_KEY != "your-api-key-here"
