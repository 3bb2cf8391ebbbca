import unittest
from datetime import datetime, timezone

from apphub.stats import compute_usage_stats, period_start
from apphub.types import AccessRecord


def access(app_id, when, name=None):
    return AccessRecord(
        user_id="u1",
        app_id=app_id,
        name=name or app_id.upper(),
        timestamp=when.timestamp(),
    )


# 2024-06-02 is a Sunday.
SUNDAY_9 = datetime(2024, 6, 2, 9, 15, tzinfo=timezone.utc)
MONDAY_14 = datetime(2024, 6, 3, 14, 0, tzinfo=timezone.utc)
SATURDAY_9 = datetime(2024, 6, 8, 9, 30, tzinfo=timezone.utc)


class UsageStatsTests(unittest.TestCase):
    def test_empty_history(self):
        now = datetime(2024, 6, 5, 12, 0, tzinfo=timezone.utc)  # Wednesday
        stats = compute_usage_stats([], now=now)
        self.assertEqual(stats.total_accesses, 0)
        self.assertEqual(stats.most_active_hour, 0)
        self.assertEqual(stats.most_active_day, 3)
        self.assertEqual(stats.hourly_activity, [0] * 24)
        self.assertEqual(stats.daily_activity, [0] * 7)
        self.assertEqual(stats.top_apps, [])

    def test_buckets_and_busiest_slots(self):
        records = [
            access("gh", SATURDAY_9),
            access("docs", MONDAY_14),
            access("gh", SUNDAY_9),
        ]
        stats = compute_usage_stats(records)
        self.assertEqual(stats.total_accesses, 3)
        self.assertEqual(stats.hourly_activity[9], 2)
        self.assertEqual(stats.hourly_activity[14], 1)
        self.assertEqual(stats.most_active_hour, 9)
        self.assertEqual(stats.daily_activity, [1, 1, 0, 0, 0, 0, 1])
        # Three days tie with one access each; Sunday wins.
        self.assertEqual(stats.most_active_day, 0)

    def test_top_apps_limited_and_ordered(self):
        records = []
        for index, app_id in enumerate(["a", "b", "c", "d", "e", "f"]):
            records.append(access(app_id, SUNDAY_9))
            if index in (3, 4):
                records.append(access(app_id, SUNDAY_9))
        stats = compute_usage_stats(records)
        self.assertEqual(len(stats.top_apps), 5)
        self.assertEqual([t.id for t in stats.top_apps], ["d", "e", "a", "b", "c"])
        self.assertEqual(stats.top_apps[0].count, 2)
        self.assertEqual(stats.top_apps[0].name, "D")

    def test_period_start(self):
        now = datetime(2024, 6, 30, tzinfo=timezone.utc)
        self.assertEqual(
            period_start("week", now), datetime(2024, 6, 23, tzinfo=timezone.utc).timestamp()
        )
        self.assertEqual(
            period_start("month", now), datetime(2024, 5, 31, tzinfo=timezone.utc).timestamp()
        )
        self.assertIsNone(period_start("allTime", now))


if __name__ == "__main__":
    unittest.main()
