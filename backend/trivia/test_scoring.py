from unittest import TestCase

from . import scoring


class SpeedBonusTests(TestCase):
    def test_tiers(self):
        self.assertEqual(scoring.calculate_speed_bonus(25), 50)
        self.assertEqual(scoring.calculate_speed_bonus(15), 50)
        self.assertEqual(scoring.calculate_speed_bonus(14.9), 25)
        self.assertEqual(scoring.calculate_speed_bonus(5), 25)
        self.assertEqual(scoring.calculate_speed_bonus(4.9), 0)
        self.assertEqual(scoring.calculate_speed_bonus(0), 0)


class CalculateScoreTests(TestCase):
    def test_correct_fast_answer(self):
        self.assertEqual(scoring.calculate_score(True, 20), (100, 50, 150))

    def test_correct_slow_answer_gets_base_only(self):
        self.assertEqual(scoring.calculate_score(True, 2), (100, 0, 100))

    def test_incorrect_answer_scores_nothing(self):
        self.assertEqual(scoring.calculate_score(False, 24), (0, 0, 0))

    def test_flagged_answer_loses_speed_bonus(self):
        self.assertEqual(scoring.calculate_score(True, 20, flagged=True), (100, 0, 100))

    def test_penalty_never_exceeds_unpenalized_score(self):
        for remaining in (0, 5, 10, 15, 25):
            for correct in (True, False):
                plain = scoring.calculate_score(correct, remaining)
                damped = scoring.calculate_score(correct, remaining, penalty_active=True)
                self.assertLessEqual(damped.total_points, plain.total_points)

    def test_default_penalty_values(self):
        self.assertEqual(scoring.calculate_score(True, 20, penalty_active=True), (80, 25, 105))

    def test_penalty_keeps_at_least_one_point_for_correct_answer(self):
        policy = scoring.PenaltyPolicy(base_factor=0.0, speed_factor=0.0)
        score = scoring.calculate_score(True, 20, penalty_active=True, penalty=policy)
        self.assertEqual(score.total_points, 1)


class WagerTests(TestCase):
    def test_wager_score(self):
        self.assertEqual(scoring.calculate_wager_score(True, 100), (0, 0, 100))
        self.assertEqual(scoring.calculate_wager_score(False, 100), (0, 0, -100))
        self.assertEqual(scoring.calculate_wager_score(True, None), (0, 0, 0))
        self.assertEqual(scoring.calculate_wager_score(False, 0), (0, 0, 0))

    def test_max_wager_is_half_the_score_rounded_down(self):
        self.assertEqual(scoring.max_wager(300), 150)
        self.assertEqual(scoring.max_wager(301), 150)
        self.assertEqual(scoring.max_wager(1), 0)
        self.assertEqual(scoring.max_wager(-50), 0)


class MiscTests(TestCase):
    def test_response_time_is_clamped(self):
        self.assertEqual(scoring.calculate_response_time(25, 20), 5)
        self.assertEqual(scoring.calculate_response_time(25, 30), 0)

    def test_progression(self):
        self.assertEqual(scoring.calculate_progression(7), (57, 17))
        self.assertEqual(scoring.calculate_progression(0), (50, 10))
