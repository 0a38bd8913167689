import os
from dataclasses import dataclass


PIPELINE_VERSION = "0.1.0"
DEFAULT_MODEL = os.getenv("EVIDENTIA_DEFAULT_MODEL", "gpt-5-mini")


def _model(name: str) -> str:
    return os.getenv(name, DEFAULT_MODEL)


def _int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class ModelConfig:
    claims: str = _model("EVIDENTIA_MODEL_CLAIMS")
    similar_papers: str = _model("EVIDENTIA_MODEL_SIMILAR_PAPERS")
    research_groups: str = _model("EVIDENTIA_MODEL_RESEARCH_GROUPS")
    researcher_theses: str = _model("EVIDENTIA_MODEL_RESEARCHER_THESES")
    patents: str = _model("EVIDENTIA_MODEL_PATENTS")
    verified_claims: str = _model("EVIDENTIA_MODEL_VERIFIED_CLAIMS")
    thesis_deep_dive: str = _model("EVIDENTIA_MODEL_THESIS_DEEP_DIVE")
    cleanup: str = _model("EVIDENTIA_MODEL_CLEANUP")


@dataclass(frozen=True)
class OutputLimits:
    claims: int = _int("EVIDENTIA_MAX_OUTPUT_CLAIMS", 8192)
    similar_papers: int = _int("EVIDENTIA_MAX_OUTPUT_SIMILAR_PAPERS", 6144)
    research_groups: int = _int("EVIDENTIA_MAX_OUTPUT_RESEARCH_GROUPS", 16384)
    researcher_theses: int = _int("EVIDENTIA_MAX_OUTPUT_RESEARCHER_THESES", 8192)
    patents: int = _int("EVIDENTIA_MAX_OUTPUT_PATENTS", 8192)
    verified_claims: int = _int("EVIDENTIA_MAX_OUTPUT_VERIFIED_CLAIMS", 16384)
    thesis_deep_dive: int = _int("EVIDENTIA_MAX_OUTPUT_THESIS_DEEP_DIVE", 8192)
    cleanup: int = _int("EVIDENTIA_MAX_OUTPUT_CLEANUP", 16384)


@dataclass(frozen=True)
class GenerationSettings:
    timeout_seconds: float = _float("EVIDENTIA_GENERATION_TIMEOUT_SECONDS", 600.0)
    reasoning_effort: str = os.getenv("EVIDENTIA_REASONING_EFFORT", "low")
    search_context_size: str = os.getenv("EVIDENTIA_SEARCH_CONTEXT_SIZE", "medium")
    max_retries: int = _int("EVIDENTIA_MAX_RETRIES", 4)


@dataclass(frozen=True)
class HttpSettings:
    # 0 means "use the caller's timeout".
    timeout_seconds: float = _float("EVIDENTIA_HTTP_TIMEOUT_SECONDS", 0.0)
    ssl_verify: bool = (os.getenv("EVIDENTIA_SSL_VERIFY") or "true").strip().lower() in {"1", "true", "yes", "on"}
    proxy: str = (os.getenv("EVIDENTIA_HTTP_PROXY") or "").strip()
    user_agent: str = (os.getenv("EVIDENTIA_USER_AGENT") or f"evidentia/{PIPELINE_VERSION}").strip()


@dataclass(frozen=True)
class LibrarySettings:
    db_path: str = os.getenv("EVIDENTIA_DB_PATH", "outputs/evidentia_library.db")
    capacity: int = _int("EVIDENTIA_LIBRARY_CAPACITY", 20)


MODELS = ModelConfig()
OUTPUT_LIMITS = OutputLimits()
GENERATION = GenerationSettings()
LIBRARY = LibrarySettings()
HTTP = HttpSettings()
