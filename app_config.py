from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

from dotenv import load_dotenv

PROVIDER_OPENAI = "openai"
PROVIDER_GEMINI = "gemini"

_DEFAULT_MODELS = {
    PROVIDER_OPENAI: "gpt-5-mini",
    PROVIDER_GEMINI: "gemini-2.5-flash",
}

# Checked in order; the first non-empty value wins.
_API_KEY_NAMES: dict[str, Sequence[str]] = {
    PROVIDER_OPENAI: ("OPENAI_API_KEY",),
    PROVIDER_GEMINI: ("GEMINI_API_KEY", "API_KEY", "VITE_API_KEY"),
}

_MODEL_KEY_NAMES = {
    PROVIDER_OPENAI: "OPENAI_QUOTE_MODEL",
    PROVIDER_GEMINI: "GEMINI_QUOTE_MODEL",
}


class MissingCredentials(RuntimeError):
    pass


@dataclass(frozen=True)
class AppConfig:
    provider: str
    api_key: str
    model: str
    data_dir: Path
    log_level: str = "INFO"


def read_setting(key: str, *, secrets: Optional[Mapping[str, object]] = None, environ: Optional[Mapping[str, str]] = None) -> str:
    """
    Read a configuration value from Streamlit secrets (preferred) or environment variables.

    Returns a stripped string; returns "" when missing.
    """
    val: object = ""
    if secrets is not None:
        try:
            val = secrets.get(key, "")
        except Exception:
            # st.secrets raises when no secrets.toml exists at all
            val = ""
    if not val:
        val = (environ if environ is not None else os.environ).get(key, "")
    if isinstance(val, str):
        return val.strip()
    return str(val).strip() if val is not None else ""


def load_app_config(
    *,
    secrets: Optional[Mapping[str, object]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """
    Resolve provider, credentials and storage location.

    Raises MissingCredentials when the selected provider has no API key; the app must not start
    without one.
    """
    if environ is None:
        load_dotenv()

    def get(key: str) -> str:
        return read_setting(key, secrets=secrets, environ=environ)

    provider = get("QUOTE_AI_PROVIDER").lower() or PROVIDER_OPENAI
    if provider not in _DEFAULT_MODELS:
        raise ValueError(f"QUOTE_AI_PROVIDER must be one of {sorted(_DEFAULT_MODELS)} (got {provider!r})")

    api_key = ""
    for name in _API_KEY_NAMES[provider]:
        api_key = get(name)
        if api_key:
            break
    if not api_key:
        names = " or ".join(_API_KEY_NAMES[provider])
        raise MissingCredentials(
            f"API key not found. Set {names} in the environment or in .streamlit/secrets.toml."
        )

    model = get(_MODEL_KEY_NAMES[provider]) or _DEFAULT_MODELS[provider]
    data_dir = Path(get("QUOTE_DATA_DIR") or "data")
    log_level = get("LOG_LEVEL").upper() or "INFO"
    return AppConfig(provider=provider, api_key=api_key, model=model, data_dir=data_dir, log_level=log_level)


_logging_configured = False


def configure_logging(level: str = "INFO") -> None:
    global _logging_configured
    if _logging_configured:
        return
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _logging_configured = True
