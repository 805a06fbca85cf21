"""Tests for CI analytics validation script."""

from ci.validate_analytics import validate


def _valid_data():
    """Return minimal valid dashboard data."""
    metrics = {
        "sessions": 400,
        "total_events": 2100,
        "sessions_with_clicks": 240,
        "total_clicks": 700,
        "total_scrolls": 310,
        "click_rate": 60.0,
    }
    return {
        "site_id": "site_demo",
        "cohorts": [
            {
                "cohort": {"id": "coh_mobile", "site_id": "site_demo", "name": "Mobile", "rules": []},
                "metrics": metrics,
                "top_pages": [{"page_path": "/", "views": 500, "sessions": 300}],
                "device_breakdown": [{"device_type": "mobile", "sessions": 400}],
                "warnings": [],
                "query_failed": False,
            }
        ],
        "comparison": [
            {
                "cohort_id": "coh_mobile",
                "cohort_name": "Mobile",
                "sessions": 400,
                "events": 2100,
                "clicks": 700,
                "events_per_session": 5.2,
            }
        ],
        "experiments": [
            {
                "experiment_id": "exp_1",
                "total_users": 500,
                "variants": [
                    {"variant_id": "control", "users": 250, "conversions": 20, "conversion_rate": 0.08},
                    {"variant_id": "variant_a", "users": 250, "conversions": 30, "conversion_rate": 0.12},
                ],
                "is_significant": False,
                "confidence_level": 85.6,
                "winner_variant_id": None,
                "status_message": "trending but not significant",
                "minimum_sample_size": 14751,
                "has_enough_data": False,
                "query_failed": False,
            }
        ],
    }


class TestValidate:
    def test_valid_data_passes(self):
        errors = validate(_valid_data())
        assert errors == []

    def test_missing_top_level_key(self):
        data = _valid_data()
        del data["comparison"]
        errors = validate(data)
        assert any("Missing top-level key: comparison" in e for e in errors)

    def test_empty_cohorts(self):
        data = _valid_data()
        data["cohorts"] = []
        data["comparison"] = []
        errors = validate(data)
        assert any("cohorts is empty" in e for e in errors)

    def test_failed_cohort_query(self):
        data = _valid_data()
        data["cohorts"][0]["query_failed"] = True
        errors = validate(data)
        assert any("coh_mobile query failed" in e for e in errors)

    def test_click_rate_out_of_range(self):
        data = _valid_data()
        data["cohorts"][0]["metrics"]["click_rate"] = 140.0
        errors = validate(data)
        assert any("invalid click rate" in e for e in errors)

    def test_comparison_row_count(self):
        data = _valid_data()
        data["comparison"] = []
        errors = validate(data)
        assert any("Comparison has 0 rows" in e for e in errors)

    def test_empty_experiments(self):
        data = _valid_data()
        data["experiments"] = []
        errors = validate(data)
        assert any("experiments is empty" in e for e in errors)

    def test_missing_result_fields(self):
        data = _valid_data()
        del data["experiments"][0]["confidence_level"]
        errors = validate(data)
        assert any("missing fields" in e for e in errors)

    def test_conversions_above_users(self):
        data = _valid_data()
        data["experiments"][0]["variants"][0]["conversions"] = 300
        errors = validate(data)
        assert any("more conversions than users" in e for e in errors)

    def test_invalid_confidence(self):
        data = _valid_data()
        data["experiments"][0]["confidence_level"] = 101.0
        errors = validate(data)
        assert any("confidence out of range" in e for e in errors)

    def test_winner_requires_significance(self):
        data = _valid_data()
        data["experiments"][0]["winner_variant_id"] = "variant_a"
        errors = validate(data)
        assert any("winner without significance" in e for e in errors)

    def test_unknown_winner(self):
        data = _valid_data()
        data["experiments"][0]["is_significant"] = True
        data["experiments"][0]["winner_variant_id"] = "variant_z"
        errors = validate(data)
        assert any("not one of its variants" in e for e in errors)

    def test_invalid_status(self):
        data = _valid_data()
        data["experiments"][0]["status_message"] = "ship it"
        errors = validate(data)
        assert any("invalid status" in e for e in errors)

    def test_zero_users_in_variant(self):
        data = _valid_data()
        data["experiments"][0]["variants"][0]["users"] = 0
        errors = validate(data)
        assert any("0 users" in e for e in errors)
