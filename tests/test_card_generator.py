import tempfile
import unittest

from jubilee.core.cancellation import CancelToken, GenerationCancelled
from jubilee.schemas import EventRoleRef, Registrant
from jubilee.services.badge_compositor import AssetLoader, BadgeCompositor
from jubilee.services.card_generator import CardGeneratorService
from jubilee.services.errors import CardErrorKind, CardGenerationError


class FakeCompositor:
    """Returns a fake data URI per registrant; fails for ids listed in ``failing``."""

    def __init__(self, failing=(), crash=()):
        self.failing = set(failing)
        self.crash = set(crash)
        self.rendered = []

    def render_badge(self, registrant):
        if registrant.id in self.failing:
            raise CardGenerationError(CardErrorKind.USER_NOT_FOUND, "Thiếu họ và tên", user_id=registrant.id)
        if registrant.id in self.crash:
            raise RuntimeError("canvas exploded")
        self.rendered.append(registrant.id)
        return f"data:image/png;base64,{registrant.id}"


def _people(n):
    return [Registrant(id=f"r{i}", full_name=f"Person {i}") for i in range(n)]


class GenerateCardsTests(unittest.IsolatedAsyncioTestCase):
    async def test_cards_follow_input_order(self):
        service = CardGeneratorService(FakeCompositor(), delay=0)
        result = await service.generate_cards_for_users(_people(5))
        self.assertTrue(result.success)
        self.assertEqual([c.user_id for c in result.cards], ["r0", "r1", "r2", "r3", "r4"])
        self.assertEqual(result.cards[0].id, "card-r0")
        self.assertEqual(result.errors, [])

    async def test_partial_failure_is_recorded_and_does_not_abort(self):
        service = CardGeneratorService(FakeCompositor(failing={"r1"}, crash={"r3"}), delay=0)
        result = await service.generate_cards_for_users(_people(5))

        self.assertTrue(result.success)
        self.assertEqual([c.user_id for c in result.cards], ["r0", "r2", "r4"])
        self.assertEqual([(e.user_id, e.kind) for e in result.errors],
                         [("r1", CardErrorKind.USER_NOT_FOUND), ("r3", CardErrorKind.CANVAS_ERROR)])
        self.assertEqual(result.errors[1].message, "canvas exploded")

    async def test_all_failing_is_not_success(self):
        people = _people(2)
        service = CardGeneratorService(FakeCompositor(failing={"r0", "r1"}), delay=0)
        result = await service.generate_cards_for_users(people)
        self.assertFalse(result.success)
        self.assertEqual(len(result.errors), 2)

    async def test_missing_assets_are_not_card_errors(self):
        with tempfile.TemporaryDirectory() as static_dir:
            loader = AssetLoader(static_dir, static_dir, timeout=1)
            service = CardGeneratorService(BadgeCompositor(loader, "Đại hội", "ĐẠI HỘI", "Kanagawa"), delay=0)
            people = [Registrant(id="r0", full_name="Maria Lan", portrait_url="/static/missing.png"),
                      Registrant(id="r1", full_name=" ")]
            result = await service.generate_cards_for_users(people)

        self.assertEqual([c.user_id for c in result.cards], ["r0"])
        self.assertEqual([(e.user_id, e.kind) for e in result.errors], [("r1", CardErrorKind.USER_NOT_FOUND)])

    async def test_progress_reported_after_each_participant(self):
        calls = []
        service = CardGeneratorService(FakeCompositor(failing={"r1"}), delay=0)
        await service.generate_cards_for_users(_people(3), on_progress=lambda c, t: calls.append((c, t)))
        self.assertEqual(calls, [(1, 3), (2, 3), (3, 3)])

    async def test_cancel_before_next_iteration(self):
        token = CancelToken()
        compositor = FakeCompositor()
        service = CardGeneratorService(compositor, delay=0)

        def cancel_after_two(completed, total):
            if completed == 2:
                token.cancel()

        with self.assertRaises(GenerationCancelled):
            await service.generate_cards_for_users(_people(5), on_progress=cancel_after_two, cancel_token=token)
        self.assertEqual(compositor.rendered, ["r0", "r1"])

    async def test_preview_is_capped(self):
        service = CardGeneratorService(FakeCompositor(), delay=0)
        cards = await service.get_cards_preview(_people(20), max_cards=12)
        self.assertEqual(len(cards), 12)

    async def test_organizer_role_label(self):
        service = CardGeneratorService(FakeCompositor(), delay=0)
        card = await service.generate_single_card(
            Registrant(id="x", full_name="A", saint_name="Giuse", event_role=EventRoleRef(name="Ban Lễ Tân"))
        )
        self.assertEqual(card.role, "Ban Lễ Tân")
        self.assertEqual(card.saint_name, "Giuse")


class CardHelpersTests(unittest.TestCase):
    def test_validate_registrants(self):
        people = [
            Registrant(id="ok", full_name="Maria"),
            Registrant(id="blank", full_name="   "),
            Registrant(id="", full_name="No Id"),
        ]
        valid, invalid = CardGeneratorService.validate_registrants(people)
        self.assertEqual([r.id for r in valid], ["ok"])
        self.assertEqual([(r.id, reason) for r, reason in invalid], [("blank", "Thiếu họ và tên"), ("", "Thiếu ID")])

    def test_estimate_pdf_pages(self):
        self.assertEqual(CardGeneratorService.estimate_pdf_pages(0), 0)
        self.assertEqual(CardGeneratorService.estimate_pdf_pages(4), 1)
        self.assertEqual(CardGeneratorService.estimate_pdf_pages(5), 2)

    def test_card_stats(self):
        people = [
            Registrant(id="1", full_name="A", event_role=EventRoleRef(name="Ban Lễ Tân"), portrait_url="/static/a.jpg"),
            Registrant(id="2", full_name="B"),
            Registrant(id="3", full_name="C", portrait_url="/static/c.jpg"),
        ]
        stats = CardGeneratorService(FakeCompositor()).get_card_stats(people)
        self.assertEqual((stats.total, stats.organizers, stats.participants), (3, 1, 2))
        self.assertEqual((stats.with_photo, stats.without_photo, stats.estimated_pages), (2, 1, 1))


if __name__ == "__main__":
    unittest.main()
