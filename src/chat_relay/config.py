import os
from pathlib import Path

PROJECT_DIR = Path(__file__).resolve().parent.parent.parent
DATA_DIR = Path(os.environ.get("DATA_DIR", str(PROJECT_DIR / "data")))
MIRROR_SQLITE_PATH = DATA_DIR / "mirror.db"

PORT = int(os.environ.get("PORT", "3000"))
ROOT_PATH = os.environ.get("ROOT_PATH", "")

# SoulGraph inference backend
SOULGRAPH_API_URL = os.environ.get("API_URL", "http://localhost:8000")
SOULGRAPH_API_PREFIX = os.environ.get("API_PREFIX", "/v0")
SOULGRAPH_TOKEN = os.environ.get("SOULGRAPH_TOKEN") or None
UPSTREAM_TIMEOUT_SECS = float(os.environ.get("UPSTREAM_TIMEOUT_SECS", "60"))

# OpenAI reads OPENAI_API_KEY itself
OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-3.5-turbo")
DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."

# Mirror datastore; Supabase is used only when both values are present
SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY = os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")
MIRROR_TABLE = "chat_threads"
TITLE_MAX_CHARS = 50

TEST_USER_ID = "test-user-123"
