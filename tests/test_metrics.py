"""
Tests for accuracy and pipeline reporting.
"""

import pytest

from workorder.evaluation import AccuracyReport, PipelineStats
from workorder.storage import FeedbackRecord


FEEDBACK = [
    FeedbackRecord(document_id=1, predicted_client_id=1, actual_client_id=1, is_correct=True),
    FeedbackRecord(document_id=2, predicted_client_id=1, actual_client_id=2, is_correct=False),
    FeedbackRecord(document_id=3, predicted_client_id=1, actual_client_id=2, is_correct=False),
    FeedbackRecord(document_id=4, predicted_client_id=None, actual_client_id=3, is_correct=False),
]


class TestAccuracyReport:
    """Test feedback accuracy"""

    def test_from_feedback(self):
        report = AccuracyReport.from_feedback(FEEDBACK)

        assert report.total_feedbacks == 4
        assert report.correct_predictions == 1
        assert report.accuracy == pytest.approx(0.25)
        assert report.top_confusions(1) == [((1, 2), 2)]
        assert report.to_dict()["confusions"][0] == {
            "predicted_client_id": 1, "actual_client_id": 2, "count": 2,
        }

    def test_empty(self):
        report = AccuracyReport.from_feedback([])
        assert report.accuracy == 0.0
        assert report.timestamp


class TestPipelineStats:
    """Test aggregate reporting"""

    def make_stats(self):
        return PipelineStats.from_database(
            {
                "total": 4,
                "avg_confidence": 0.8,
                "avg_processing_time_ms": 1500.0,
                "total_api_cost_usd": 0.0421,
                "by_status": {"classified": 3, "failed": 1},
                "by_method": {"keyword": 2, "ai_vision": 1, "error": 1},
            },
            {"total_clients": 3, "active_clients": 2, "inactive_clients": 1},
            FEEDBACK,
        )

    def test_automation_rate(self):
        assert self.make_stats().automation_rate == pytest.approx(0.75)

    def test_to_dict(self):
        data = self.make_stats().to_dict()
        assert data["total_documents"] == 4
        assert data["accuracy"]["total_feedbacks"] == 4
        assert data["entities"]["active_clients"] == 2

    def test_print_report(self):
        report = self.make_stats().print_report()

        assert "Documents: 4" in report
        assert "Total API Cost:      $0.0421" in report
        assert "Automation Rate:     75.0%" in report
        assert "classified" in report
        assert "1 -> 2: 2" in report

    def test_empty_database(self):
        stats = PipelineStats.from_database(
            {"total": 0, "avg_confidence": None, "avg_processing_time_ms": None,
             "total_api_cost_usd": 0, "by_status": {}, "by_method": {}},
            {"total_clients": 0, "active_clients": 0, "inactive_clients": 0},
            [],
        )
        assert stats.automation_rate == 0.0
        assert "n/a" in stats.print_report()
