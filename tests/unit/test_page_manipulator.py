import pytest

from docproc.pages.manipulator import (
    PageMove,
    PageRecord,
    RotationPlan,
    check_append_sources,
    page_fingerprint,
    plan_append,
    plan_delete,
    plan_reorder,
    plan_rotation,
    plan_split,
    two_phase_renumber,
)
from docproc.pdf.base import AppendSource
from docproc.processor.exceptions import PageNotFoundError, ProcessingValidationError


def _pages(count: int) -> list[PageRecord]:
    return [PageRecord(id=f"p{n}", page_number=n) for n in range(1, count + 1)]


def _apply(pages: list[PageRecord], moves: list[PageMove]) -> dict[str, int]:
    numbers = {page.id: page.page_number for page in pages}
    phase_one, phase_two = two_phase_renumber(moves)
    numbers.update(phase_one)
    numbers.update(phase_two)
    return numbers


class TestPlanDelete:
    def test_survivors_are_renumbered_densely(self) -> None:
        pages = _pages(5)
        plan = plan_delete(pages, [2, 4])

        assert plan.deleted_page_numbers == [2, 4]
        assert plan.deleted_page_ids == ["p2", "p4"]
        assert plan.new_page_count == 3
        survivors = {k: v for k, v in _apply(pages, plan.moves).items() if k not in {"p2", "p4"}}
        assert survivors == {"p1": 1, "p3": 2, "p5": 3}

    def test_input_is_deduplicated_and_sorted(self) -> None:
        plan = plan_delete(_pages(4), [3, 1, 3])
        assert plan.deleted_page_numbers == [1, 3]

    def test_unmoved_pages_are_not_touched(self) -> None:
        plan = plan_delete(_pages(4), [4])
        assert plan.moves == []

    def test_rejects_deleting_every_page(self) -> None:
        with pytest.raises(ProcessingValidationError, match="Cannot delete all pages"):
            plan_delete(_pages(3), [1, 2, 3])

    def test_rejects_out_of_range(self) -> None:
        with pytest.raises(ProcessingValidationError, match="Invalid page numbers: \\[0, 6\\]"):
            plan_delete(_pages(5), [0, 6])

    def test_rejects_empty_input(self) -> None:
        with pytest.raises(ProcessingValidationError):
            plan_delete(_pages(5), [])

    def test_rejects_non_integers(self) -> None:
        with pytest.raises(ProcessingValidationError, match="must be integers"):
            plan_delete(_pages(5), ["2"])

    def test_rejects_booleans(self) -> None:
        with pytest.raises(ProcessingValidationError):
            plan_delete(_pages(5), [True])


class TestPlanReorder:
    def test_mapping_follows_new_order(self) -> None:
        plan = plan_reorder(_pages(3), [3, 1, 2])

        assert not plan.is_identity
        assert [(m.old_page_number, m.new_page_number) for m in plan.mapping] == [
            (3, 1),
            (1, 2),
            (2, 3),
        ]

    def test_identity_is_flagged(self) -> None:
        plan = plan_reorder(_pages(3), [1, 2, 3])

        assert plan.is_identity
        assert plan.moves == []

    def test_reorder_then_inverse_restores_numbers(self) -> None:
        pages = _pages(4)
        order = [2, 4, 1, 3]
        first = _apply(pages, plan_reorder(pages, order).moves)
        reordered = sorted(
            (PageRecord(id=page_id, page_number=n) for page_id, n in first.items()),
            key=lambda page: page.page_number,
        )

        inverse = [order.index(n) + 1 for n in range(1, 5)]
        restored = _apply(reordered, plan_reorder(reordered, inverse).moves)

        assert restored == {page.id: page.page_number for page in pages}

    def test_rejects_wrong_length(self) -> None:
        with pytest.raises(ProcessingValidationError, match="must include all 3 pages"):
            plan_reorder(_pages(3), [1, 2])

    def test_rejects_non_permutation(self) -> None:
        with pytest.raises(ProcessingValidationError, match="exactly once"):
            plan_reorder(_pages(3), [1, 1, 2])


class TestPlanSplit:
    def test_valid_ranges(self) -> None:
        ranges = plan_split(5, [(1, 2), (3, 5)])

        assert [(r.page_from, r.page_to) for r in ranges] == [(1, 2), (3, 5)]
        assert [r.page_count for r in ranges] == [2, 3]

    def test_requires_two_ranges(self) -> None:
        with pytest.raises(ProcessingValidationError, match="At least 2 page ranges"):
            plan_split(5, [(1, 5)])

    def test_requires_two_pages(self) -> None:
        with pytest.raises(ProcessingValidationError, match="at least 2 pages"):
            plan_split(1, [(1, 1), (1, 1)])

    @pytest.mark.parametrize("bad", [(0, 2), (2, 6), (4, 3)])
    def test_rejects_invalid_range(self, bad: tuple[int, int]) -> None:
        with pytest.raises(ProcessingValidationError, match="Invalid range"):
            plan_split(5, [(1, 1), bad])


class TestTwoPhaseRenumber:
    def test_phase_one_negates_current_numbers(self) -> None:
        moves = [PageMove("a", 1, 2), PageMove("b", 2, 1)]
        phase_one, phase_two = two_phase_renumber(moves)

        assert phase_one == {"a": -1, "b": -2}
        assert phase_two == {"a": 2, "b": 1}

    def test_no_collision_between_phases(self) -> None:
        moves = [PageMove("a", 1, 3), PageMove("b", 2, 1), PageMove("c", 3, 2)]
        phase_one, _phase_two = two_phase_renumber(moves)

        assert all(number < 0 for number in phase_one.values())
        assert len(set(phase_one.values())) == len(moves)


class TestPageFingerprint:
    def test_is_sixteen_hex_chars(self) -> None:
        fingerprint = page_fingerprint("documents/t1/abc.pdf", 1)
        assert len(fingerprint) == 16
        int(fingerprint, 16)

    def test_is_position_sensitive(self) -> None:
        assert page_fingerprint("key", 1) != page_fingerprint("key", 2)

    def test_is_deterministic(self) -> None:
        assert page_fingerprint("key", 3) == page_fingerprint("key", 3)


class TestCheckAppendSources:
    def test_accepts_pdfs_and_images(self) -> None:
        sources = [
            AppendSource(b"%PDF", "application/pdf", "a.pdf"),
            AppendSource(b"\x89PNG", "image/png", "b.png"),
            AppendSource(b"\xff\xd8", "image/jpg", "c.jpg"),
            AppendSource(b"II*", "image/tiff", "d.tiff"),
        ]
        assert check_append_sources(sources, 100) == sources

    def test_requires_at_least_one_file(self) -> None:
        with pytest.raises(ProcessingValidationError, match="At least one file"):
            check_append_sources([], 100)

    def test_rejects_unsupported_type(self) -> None:
        with pytest.raises(ProcessingValidationError, match="image/webp"):
            check_append_sources([AppendSource(b"RIFF", "image/webp", "a.webp")], 100)

    def test_size_limit_is_per_file(self) -> None:
        ok = AppendSource(b"x" * 100, "application/pdf", "ok.pdf")
        big = AppendSource(b"x" * 101, "application/pdf", "big.pdf")

        assert check_append_sources([ok, ok], 100) == [ok, ok]
        with pytest.raises(ProcessingValidationError, match='"big.pdf" exceeds'):
            check_append_sources([ok, big], 100)

    def test_rejects_raw_bytes(self) -> None:
        with pytest.raises(ProcessingValidationError):
            check_append_sources([b"%PDF"], 100)


class TestPlanAppend:
    def test_numbers_follow_existing_pages(self) -> None:
        assert plan_append(_pages(3), 5) == [4, 5]

    def test_no_new_pages_is_an_error(self) -> None:
        with pytest.raises(ValueError):
            plan_append(_pages(3), 3)


class TestPlanRotation:
    @pytest.mark.parametrize("rotation", [0, 90, 180, 270])
    def test_accepts_quarter_turns(self, rotation: int) -> None:
        assert plan_rotation(_pages(3), 2, rotation) == RotationPlan("p2", 2, rotation)

    @pytest.mark.parametrize("rotation", [45, 360, -90, "90", None, False])
    def test_rejects_other_rotations(self, rotation: object) -> None:
        with pytest.raises(ProcessingValidationError, match="Rotation must be"):
            plan_rotation(_pages(3), 1, rotation)

    @pytest.mark.parametrize("page_number", [0, -1, "1", True])
    def test_rejects_invalid_page_number(self, page_number: object) -> None:
        with pytest.raises(ProcessingValidationError, match="Invalid page number"):
            plan_rotation(_pages(3), page_number, 90)

    def test_missing_page(self) -> None:
        with pytest.raises(PageNotFoundError, match="Page 4 not found"):
            plan_rotation(_pages(3), 4, 90)
