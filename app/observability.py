"""
LangSmith tracing for the Gemini calls made through LangChain.
Uses LANGCHAIN_API_KEY / LANGCHAIN_PROJECT from config; exports the LANGSMITH_* env vars
that LangChain's tracer reads.
"""
import logging
import os

from app.config import settings

logger = logging.getLogger(__name__)


def setup_langsmith_tracing() -> bool:
    """Enable LangSmith tracing if configured. Returns True when tracing was switched on."""
    if not settings.langchain_tracing_v2 or not settings.langchain_api_key:
        logger.debug("LangSmith tracing disabled or no API key; skipping")
        return False

    os.environ["LANGSMITH_TRACING"] = "true"
    os.environ["LANGSMITH_API_KEY"] = settings.langchain_api_key
    os.environ["LANGSMITH_PROJECT"] = getattr(settings, "langchain_project", None) or "navicare"
    logger.info("LangSmith tracing enabled; project=%s", os.environ.get("LANGSMITH_PROJECT"))
    return True
