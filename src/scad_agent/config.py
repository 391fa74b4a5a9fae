import os
from pathlib import Path

PROJECT_DIR = Path(__file__).resolve().parent.parent.parent
DATA_DIR = PROJECT_DIR / "data"
SQLITE_PATH = DATA_DIR / "store.db"
GENERATED_DIR = Path(os.environ.get("GENERATED_DIR", str(DATA_DIR / "generated")))

HOST = os.environ.get("HOST", "127.0.0.1")
PORT = int(os.environ.get("PORT", "3001"))
ROOT_PATH = os.environ.get("ROOT_PATH", "")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.environ.get("LOG_FILE", "")
LOG_FILE_MAX_BYTES = int(os.environ.get("LOG_FILE_MAX_BYTES", str(5 * 1024 * 1024)))
LOG_FILE_BACKUP_COUNT = int(os.environ.get("LOG_FILE_BACKUP_COUNT", "5"))

MODEL_SMALL = os.environ.get("MODEL_SMALL", "claude-haiku-4-5")
MODEL_MEDIUM = os.environ.get("MODEL_MEDIUM", "claude-sonnet-4-5-20250929")
MODEL_LARGE = os.environ.get("MODEL_LARGE", "claude-opus-4-1")

MAX_COMPILE_RETRIES = int(os.environ.get("MAX_COMPILE_RETRIES", "2"))

OPENSCAD_BIN = os.environ.get("OPENSCAD_BIN", "openscad")
OPENSCAD_TIMEOUT_SECS = int(os.environ.get("OPENSCAD_TIMEOUT_SECS", "60"))
PREVIEW_IMAGE_SIZE = os.environ.get("PREVIEW_IMAGE_SIZE", "800,600")

MAX_PROMPT_LENGTH = 1000
TITLE_MAX_LENGTH = 50
FILE_MAX_AGE_HOURS = int(os.environ.get("FILE_MAX_AGE_HOURS", "24"))

OUTPUT_FORMATS = ("stl", "3mf")
