"""Environment configuration for the CLI, read once at import from the process and .env."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent

# Embeddings: "local" works offline; "mistral" / "openai" need an API key
EMBEDDING_PROVIDER = os.getenv("EMBEDDING_PROVIDER", "local")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "")
EMBEDDING_DIMENSION = int(os.getenv("EMBEDDING_DIMENSION", "384"))
EMBEDDING_TIMEOUT_SECONDS = float(os.getenv("EMBEDDING_TIMEOUT_SECONDS", "10"))
MISTRAL_API_KEY = os.getenv("MISTRAL_API_KEY", "")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")

# Vector index backend: "memory" or "faiss"
VECTOR_BACKEND = os.getenv("VECTOR_BACKEND", "memory")

CASES_PATH = os.getenv("CASES_PATH", str(BASE_DIR / "data" / "sample_cases.json"))
VECTOR_STORE_PATH = os.getenv("VECTOR_STORE_PATH", str(BASE_DIR / "data" / "vector_store.json"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def api_key_for(provider: str) -> str:
    return {"mistral": MISTRAL_API_KEY, "openai": OPENAI_API_KEY}.get(provider.lower(), "")
