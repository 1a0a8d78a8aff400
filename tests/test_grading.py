import unittest

from reportcards.core.grading import GradeBand, GradeScale, GradeScaleError, percentage


class GradingTests(unittest.TestCase):
    def setUp(self):
        self.scale = GradeScale()

    def band_index(self, letter):
        return [band.letter for band in self.scale.bands].index(letter)

    def test_high_score_is_top_band(self):
        self.assertEqual(self.scale.classify(92, 100), self.scale.bands[0].letter)

    def test_grade_bands(self):
        self.assertEqual(self.scale.classify(95, 100), "A")
        self.assertEqual(self.scale.classify(84, 100), "B")
        self.assertEqual(self.scale.classify(70, 100), "C")
        self.assertEqual(self.scale.classify(60, 100), "D")
        self.assertEqual(self.scale.classify(20, 100), "F")

    def test_percentage_uses_obtainable(self):
        self.assertEqual(percentage(45, 50), 90)
        self.assertEqual(self.scale.classify(45, 50), "A")
        self.assertEqual(percentage(2, 3), 67)
        self.assertEqual(percentage(1, 3), 33)

    def test_percentage_is_clamped(self):
        self.assertEqual(percentage(120, 100), 100)
        self.assertEqual(percentage(-5, 100), 0)
        self.assertEqual(self.scale.classify(120, 100), "A")

    def test_legacy_raw_total_without_obtainable(self):
        self.assertEqual(self.scale.classify(85, 0), "B")
        self.assertEqual(self.scale.classify(0, 0), "F")
        self.assertEqual(self.scale.classify(250, None), "A")

    def test_monotonic_in_total(self):
        for obtainable in (40, 100, 150):
            previous = None
            for total in range(0, obtainable + 1):
                index = self.band_index(self.scale.classify(total, obtainable))
                if previous is not None:
                    self.assertLessEqual(index, previous)
                previous = index

    def test_pass_and_remarks(self):
        self.assertFalse(self.scale.is_pass("F"))
        self.assertTrue(self.scale.is_pass("D"))
        self.assertEqual(self.scale.remark_for("a"), "Outstanding performance")
        self.assertEqual(self.scale.remark_for("Z"), "")

    def test_distribution(self):
        summary = self.scale.distribution([95, 85, 50, 40])
        self.assertEqual(summary.counts["A"], 1)
        self.assertEqual(summary.counts["B"], 1)
        self.assertEqual(summary.counts["F"], 2)
        self.assertEqual(summary.passes, 2)
        self.assertEqual(summary.pass_rate, 50)
        self.assertEqual(self.scale.distribution([]).pass_rate, 0)


class GradeScaleConfigTests(unittest.TestCase):
    def test_parse_custom_scale(self):
        scale = GradeScale.parse("75:A, 60:B, 50:C, 40:D, 0:F")
        self.assertEqual(scale.classify(76, 100), "A")
        self.assertEqual(scale.classify(45, 100), "D")
        self.assertEqual(scale.remark_for("A"), "Outstanding performance")

    def test_parse_empty_gives_default(self):
        self.assertEqual(GradeScale.parse("").bands, GradeScale().bands)

    def test_parse_rejects_garbage(self):
        with self.assertRaises(GradeScaleError):
            GradeScale.parse("A")
        with self.assertRaises(GradeScaleError):
            GradeScale.parse("high:A,0:F")

    def test_scale_must_cover_zero(self):
        with self.assertRaises(GradeScaleError) as ctx:
            GradeScale([GradeBand(50, "P"), GradeBand(10, "F")])
        self.assertIn("0%", str(ctx.exception))

    def test_letters_must_be_unique(self):
        with self.assertRaises(GradeScaleError):
            GradeScale([GradeBand(50, "A"), GradeBand(0, "A")])

    def test_minima_must_be_distinct(self):
        with self.assertRaises(GradeScaleError):
            GradeScale([GradeBand(50, "A"), GradeBand(50, "B"), GradeBand(0, "F")])


if __name__ == "__main__":
    unittest.main()
