from typing import List, Optional

from fastapi import APIRouter

from app.core.locales import filter_languages
from app.schemas.session import LanguageOut

router = APIRouter()


@router.get("/", response_model=List[LanguageOut])
async def list_languages(q: Optional[str] = None):
    """Supported languages, optionally filtered by label or code (picker search box)."""
    return [LanguageOut(**lang._asdict()) for lang in filter_languages(q or "")]
