from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)

DEFAULT_PERSONA_PATH = Path(__file__).resolve().parents[1] / "config" / "persona.yaml"


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Settings:
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com"
    openai_model: str = "gpt-4o-mini"
    llm_timeout: float = 60.0
    tool_timeout: float = 60.0
    max_tool_rounds: int = 3
    db_path: str = "metalmail.db"
    log_level: str = "INFO"
    persona_path: Path = DEFAULT_PERSONA_PATH
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    host: str = "127.0.0.1"
    port: int = 4000

    @staticmethod
    def from_env() -> "Settings":
        origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
        return Settings(
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            openai_base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com").rstrip("/"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            llm_timeout=_float_env("LLM_TIMEOUT", 60.0),
            tool_timeout=_float_env("TOOL_TIMEOUT", 60.0),
            # At least one round trip, otherwise no tool could ever run.
            max_tool_rounds=max(1, _int_env("MAX_TOOL_ROUNDS", 3)),
            db_path=os.getenv("METALMAIL_DB_PATH", "metalmail.db"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            persona_path=Path(os.getenv("PERSONA_PATH", str(DEFAULT_PERSONA_PATH))),
            cors_origins=origins or ["*"],
            host=os.getenv("HOST", "127.0.0.1"),
            port=_int_env("PORT", 4000),
        )


def _as_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


@dataclass
class Persona:
    """Assistant voice used for every system prompt. Unset YAML keys keep these defaults."""

    name: str = "Metalmail"
    tone: str = "professional, concise, helpful"
    style: str = "short actionable answers; bullet points for summaries"
    values: List[str] = field(
        default_factory=lambda: ["accurate", "respects the user's preferred tone", "privacy-first"]
    )
    constraints: List[str] = field(
        default_factory=lambda: ["never invent email addresses", "ask before destructive contact changes"]
    )
    system_prefix: str = (
        "You are an AI assistant that helps manage emails, contacts, and email-related tasks. "
        "You can analyze email content, draft replies, manage contacts, and provide insights "
        "about email threads and conversations."
    )

    @staticmethod
    def default() -> "Persona":
        return Persona()

    @staticmethod
    def load(path: Optional[Path] = None) -> "Persona":
        import yaml  # lazy import

        path = path or DEFAULT_PERSONA_PATH
        if not path.exists():
            logger.info("persona file %s not found, using defaults", path)
            return Persona()
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        known = {item.name for item in fields(Persona)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("ignoring unknown persona keys in %s: %s", path, ", ".join(unknown))
        overrides: Dict[str, Any] = {}
        for key in known & set(data):
            value = data[key]
            if value is None:
                continue
            overrides[key] = _as_list(value) if key in ("values", "constraints") else str(value).strip()
        return Persona(**overrides)

    def render_system(self, extras: Optional[str] = None) -> str:
        parts = [self.system_prefix.strip()]
        if self.tone:
            parts.append(f"Tone: {self.tone}.")
        if self.style:
            parts.append(f"Style: {self.style}.")
        if self.values:
            parts.append(f"Values: {', '.join(self.values)}.")
        if self.constraints:
            parts.append(f"Constraints: {', '.join(self.constraints)}.")
        if extras:
            parts.append(extras)
        return "\n".join(p for p in parts if p)


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """Configure root logging to stderr (stdout stays free for the stdio MCP transport)."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
        force=True,
    )
    # Set specific log levels for noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    return logging.getLogger("metalmail")
