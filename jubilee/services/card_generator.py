"""Batch card generation.

Renders ID cards one registrant at a time, in input order, collecting
per-registrant failures instead of aborting the batch.
"""
import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from jubilee.core.cancellation import CancelToken
from jubilee.schemas import Registrant
from jubilee.services.errors import CardErrorKind, CardGenerationError
from jubilee.services.roles import Organizer, categorize, role_label

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

CARDS_PER_PAGE = 4


@dataclass
class CardImageData:
    id: str
    user_id: str
    image_data_url: str
    saint_name: str
    full_name: str
    role: str


@dataclass
class CardError:
    kind: CardErrorKind
    message: str
    user_id: Optional[str] = None


@dataclass
class CardGenerationResult:
    success: bool
    cards: List[CardImageData] = field(default_factory=list)
    errors: List[CardError] = field(default_factory=list)


@dataclass
class CardStats:
    total: int
    organizers: int
    participants: int
    with_photo: int
    without_photo: int
    estimated_pages: int


class CardGeneratorService:
    def __init__(self, compositor, delay: float = 0.1):
        self.compositor = compositor
        self.delay = delay

    async def generate_single_card(self, registrant: Registrant) -> CardImageData:
        """Render one card; raises CardGenerationError on any failure."""
        try:
            image_data_url = await asyncio.to_thread(self.compositor.render_badge, registrant)
        except CardGenerationError:
            raise
        except Exception as e:
            raise CardGenerationError(CardErrorKind.CANVAS_ERROR, str(e) or "Failed to generate badge image",
                                      user_id=registrant.id) from e

        if not image_data_url:
            raise CardGenerationError(CardErrorKind.CANVAS_ERROR,
                                      f"Failed to generate card for {registrant.full_name}",
                                      user_id=registrant.id)

        return CardImageData(
            id=f"card-{registrant.id}",
            user_id=registrant.id,
            image_data_url=image_data_url,
            saint_name=registrant.saint_name or "",
            full_name=registrant.full_name,
            role=role_label(registrant),
        )

    async def generate_cards_for_users(
        self,
        registrants: Sequence[Registrant],
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> CardGenerationResult:
        cards: List[CardImageData] = []
        errors: List[CardError] = []
        total = len(registrants)

        for i, registrant in enumerate(registrants):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            try:
                cards.append(await self.generate_single_card(registrant))
            except CardGenerationError as e:
                logger.error(f"Error generating card for {registrant.full_name}: {e.message}")
                errors.append(CardError(kind=e.kind, message=e.message, user_id=registrant.id))

            if on_progress is not None:
                on_progress(i + 1, total)

            if self.delay and i < total - 1:
                await asyncio.sleep(self.delay)

        return CardGenerationResult(success=len(cards) > 0, cards=cards, errors=errors)

    async def generate_team_cards(
        self,
        team_members: Sequence[Registrant],
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> CardGenerationResult:
        return await self.generate_cards_for_users(team_members, on_progress, cancel_token)

    async def get_cards_preview(self, registrants: Sequence[Registrant], max_cards: int = 12) -> List[CardImageData]:
        result = await self.generate_cards_for_users(list(registrants)[:max_cards])
        return result.cards

    @staticmethod
    def validate_registrants(
        registrants: Sequence[Registrant],
    ) -> Tuple[List[Registrant], List[Tuple[Registrant, str]]]:
        valid: List[Registrant] = []
        invalid: List[Tuple[Registrant, str]] = []

        for registrant in registrants:
            if not registrant.full_name or not registrant.full_name.strip():
                invalid.append((registrant, "Thiếu họ và tên"))
                continue
            if not registrant.id:
                invalid.append((registrant, "Thiếu ID"))
                continue
            valid.append(registrant)

        return valid, invalid

    @staticmethod
    def estimate_pdf_pages(card_count: int) -> int:
        return math.ceil(card_count / CARDS_PER_PAGE)

    def get_card_stats(self, registrants: Sequence[Registrant]) -> CardStats:
        organizers = sum(1 for r in registrants if isinstance(categorize(r), Organizer))
        with_photo = sum(1 for r in registrants if r.portrait_url)
        total = len(registrants)
        return CardStats(
            total=total,
            organizers=organizers,
            participants=total - organizers,
            with_photo=with_photo,
            without_photo=total - with_photo,
            estimated_pages=self.estimate_pdf_pages(total),
        )
