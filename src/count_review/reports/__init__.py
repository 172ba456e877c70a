"""Typed access to the count report review endpoints."""

from count_review.reports.client import ReportReviewClient, report_export_url
from count_review.reports.records import RecordBrowserClient, report_url

__all__ = ["RecordBrowserClient", "ReportReviewClient", "report_export_url", "report_url"]
