# validator.py
"""
Edge validation for the platform's studiable-items payload.

Both ingestion routes (browser scrape and manual paste) end here, so a set
looks the same regardless of how it was fetched.
"""
import json
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from domain import Flashcard, FlashcardSet
from errors import DataValidationError, SetEmpty
from locator import locate_set
from log import get_logger
from utils import schema_violations

logger = get_logger(__name__)


# --- Platform response shape
class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CardMedia(_Lenient):
    plain_text: str = Field(alias="plainText", min_length=1)


class CardSide(_Lenient):
    side_id: Optional[int] = Field(default=None, alias="sideId")
    label: Optional[str] = None
    media: List[CardMedia] = Field(min_length=1)

    @property
    def text(self) -> str:
        return self.media[0].plain_text


class StudiableItem(_Lenient):
    id: Optional[int] = None
    card_sides: List[CardSide] = Field(alias="cardSides", min_length=2, max_length=2)


class ResponseModels(_Lenient):
    studiable_item: List[StudiableItem] = Field(alias="studiableItem")


class ResponseEnvelope(_Lenient):
    models: ResponseModels


class StudiableItemsResponse(_Lenient):
    responses: List[ResponseEnvelope] = Field(min_length=1)


def validate_response(raw: Any, title_guess: str, set_id: str) -> FlashcardSet:
    try:
        parsed = StudiableItemsResponse.model_validate(raw)
    except ValidationError as e:
        violations = schema_violations(e)
        logger.warning("Set %s payload failed validation (%d violations)", set_id, len(violations))
        raise DataValidationError(
            "Flashcard data does not match the expected format.",
            {"violations": violations, "raw": raw},
        ) from e

    items = [item for envelope in parsed.responses for item in envelope.models.studiable_item]
    if not items:
        raise SetEmpty("Flashcard set contains no flashcards.", {"set_id": set_id})

    flashcards = [
        Flashcard(term=item.card_sides[0].text, definition=item.card_sides[1].text)
        for item in items
    ]
    return FlashcardSet(id=set_id, title=title_guess, flashcards=flashcards)


# -----------------------------------------------------------------------------
# Manual import (operator pasted the data endpoint's JSON)
# -----------------------------------------------------------------------------
def parse_manual_import(raw: Any, source_url: str, host: Optional[str] = None) -> FlashcardSet:
    location = locate_set(source_url, host)
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise DataValidationError(
                "Pasted data is not valid JSON.",
                {"violations": [{"path": "$", "message": str(e)}], "raw": raw if isinstance(raw, str) else None},
            ) from e
    logger.info("Manual import for set %s", location.set_id)
    return validate_response(raw, location.title_guess, location.set_id)
