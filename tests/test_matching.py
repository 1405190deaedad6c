"""Tests for booking to Canvas user matching."""

import random

from conftest import make_booking, make_user

from remores_downloader.matching import identifier_keys, match_all, normalize_name
from remores_downloader.models import MatchStatus


class TestNormalizeName:
    def test_folds_case_and_whitespace(self):
        assert normalize_name("  Ann   ANDERSSON ") == "ann andersson"

    def test_strips_diacritics(self):
        assert normalize_name("Åsa Öberg") == normalize_name("asa oberg")

    def test_empty(self):
        assert normalize_name("") == ""


class TestIdentifierKeys:
    def test_domain_local_part(self):
        assert identifier_keys("Ann@KTH.se", "kth.se") == {"ann@kth.se", "ann"}

    def test_other_domain_is_not_shortened(self):
        assert identifier_keys("ann@gmail.com", "kth.se") == {"ann@gmail.com"}

    def test_missing(self):
        assert identifier_keys(None, "kth.se") == set()


class TestMatchAll:
    def test_exact_then_name_scenario(self):
        bookings = [make_booking("u1", "Ann A"), make_booking("u2", "Bob B")]
        users = [make_user(1, "Ann A", login_id="u1"), make_user(9, "Bob B", login_id="u9")]

        results = match_all(bookings, users)

        assert [r.status for r in results] == [MatchStatus.EXACT, MatchStatus.MEDIUM]
        assert results[0].canvas_user.id == 1
        assert results[1].canvas_user.id == 9

    def test_exact_identifier_wins_over_name(self):
        bookings = [make_booking("u1", "Zed Z")]
        users = [make_user(1, "Ann A", login_id="u1"), make_user(2, "Zed Z", login_id="u2")]

        results = match_all(bookings, users)

        assert results[0].status is MatchStatus.EXACT
        assert results[0].canvas_user.id == 1

    def test_sis_id_is_an_exact_match(self):
        results = match_all([make_booking("s123", "X")], [make_user(5, "Y", sis_user_id="S123")])
        assert results[0].status is MatchStatus.EXACT

    def test_kth_email_matches_login_local_part(self):
        results = match_all(
            [make_booking("ann@kth.se", "Ann A")],
            [make_user(1, "Someone Else", login_id="ann")],
            identifier_domain="kth.se",
        )
        assert results[0].status is MatchStatus.EXACT
        assert results[0].canvas_user.id == 1

    def test_two_bookings_with_same_name_are_both_ambiguous(self):
        bookings = [make_booking("x1@gmail.com", "Ann A"), make_booking("x2@gmail.com", "ann  a")]
        users = [make_user(1, "Ann A", login_id="ann")]

        results = match_all(bookings, users)

        assert [r.status for r in results] == [MatchStatus.AMBIGUOUS, MatchStatus.AMBIGUOUS]
        assert all(r.canvas_user is None for r in results)

    def test_two_users_with_same_name_are_ambiguous(self):
        users = [make_user(1, "Ann A", login_id="ann1"), make_user(2, "Ann A", login_id="ann2")]

        results = match_all([make_booking("ann@gmail.com", "Ann A")], users)

        assert results[0].status is MatchStatus.AMBIGUOUS
        assert {u.id for u in results[0].candidates} == {1, 2}

    def test_not_found(self):
        results = match_all([make_booking("nobody", "No Body")], [make_user(1, "Ann A", login_id="ann")])
        assert results[0].status is MatchStatus.NOT_FOUND
        assert results[0].canvas_user is None

    def test_every_booking_gets_a_result(self):
        bookings = [make_booking(f"b{i}", f"Name {i}") for i in range(5)]
        results = match_all(bookings, [])
        assert [r.booking for r in results] == bookings

    def test_claimed_user_is_not_reused_by_name(self):
        bookings = [make_booking("u1", "Ann A"), make_booking("other@gmail.com", "Ann A")]
        users = [make_user(1, "Ann A", login_id="u1")]

        results = match_all(bookings, users)

        assert results[0].status is MatchStatus.EXACT
        assert results[1].status is MatchStatus.NOT_FOUND

    def test_repeat_booking_does_not_fall_back_to_a_namesake(self):
        bookings = [make_booking("erik1@kth.se", "Erik Andersson"), make_booking("erik1@kth.se", "Erik Andersson")]
        users = [make_user(1, "Erik Andersson", login_id="erik1"), make_user(2, "Erik Andersson", login_id="erik2")]

        results = match_all(bookings, users, identifier_domain="kth.se", fuzzy_threshold=0.5)

        assert results[0].status is MatchStatus.EXACT
        assert results[0].canvas_user.id == 1
        assert results[1].status is MatchStatus.NOT_FOUND
        assert results[1].canvas_user is None

    def test_shared_name_without_any_user_is_not_found(self):
        bookings = [make_booking("x1@gmail.com", "Nobody Here"), make_booking("x2@gmail.com", "nobody here")]

        results = match_all(bookings, [make_user(1, "Ann A", login_id="ann")])

        assert [r.status for r in results] == [MatchStatus.NOT_FOUND, MatchStatus.NOT_FOUND]

    def test_shared_name_without_any_user_still_tries_fuzzy(self):
        bookings = [make_booking("x1@gmail.com", "Jon Smith"), make_booking("x2@gmail.com", "jon smith")]

        results = match_all(bookings, [make_user(1, "John Smith", login_id="js")], fuzzy_threshold=0.8)

        assert results[0].status is MatchStatus.FUZZY
        assert results[0].canvas_user.id == 1
        assert results[1].status is MatchStatus.NOT_FOUND

    def test_exact_matches_are_resolved_before_names(self):
        # The name-only booking comes first but must not take the user the second booking owns
        bookings = [make_booking("x@gmail.com", "Ann A"), make_booking("u1", "Someone")]
        users = [make_user(1, "Ann A", login_id="u1")]

        results = match_all(bookings, users)

        assert results[0].status is MatchStatus.NOT_FOUND
        assert results[1].status is MatchStatus.EXACT

    def test_fuzzy_disabled_by_default(self):
        results = match_all([make_booking("x", "Jon Smith")], [make_user(1, "John Smith", login_id="js")])
        assert results[0].status is MatchStatus.NOT_FOUND

    def test_fuzzy_match_above_threshold(self):
        results = match_all(
            [make_booking("x", "Jon Smith")],
            [make_user(1, "John Smith", login_id="js"), make_user(2, "Mary Jones", login_id="mj")],
            fuzzy_threshold=0.8,
        )
        assert results[0].status is MatchStatus.FUZZY
        assert results[0].canvas_user.id == 1

    def test_fuzzy_tie_is_ambiguous(self):
        results = match_all(
            [make_booking("x", "Ann B")],
            [make_user(1, "Ann A", login_id="a"), make_user(2, "Ann C", login_id="c")],
            fuzzy_threshold=0.5,
        )
        assert results[0].status is MatchStatus.AMBIGUOUS

    def test_user_is_matched_at_most_once(self):
        rng = random.Random(1234)
        names = ["Ann A", "Bob B", "Cid C", "Dan D"]
        for _ in range(50):
            users = [
                make_user(i, rng.choice(names), login_id=f"u{rng.randint(0, 6)}")
                for i in range(rng.randint(0, 6))
            ]
            bookings = [make_booking(f"u{rng.randint(0, 6)}", rng.choice(names)) for _ in range(rng.randint(0, 6))]

            results = match_all(bookings, users, fuzzy_threshold=rng.choice([None, 0.6]))

            assert len(results) == len(bookings)
            matched = [r.canvas_user.id for r in results if r.canvas_user is not None]
            assert len(matched) == len(set(matched))
            assert all((r.canvas_user is not None) == r.status.resolved for r in results)
