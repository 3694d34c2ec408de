"""Tests for the report parser."""

from lens_agent.analysis.parser import (
    build_report_digest,
    detect_errors,
    extract_error_locations,
    extract_keywords,
    extract_search_keywords,
    infer_category_hint,
    is_utility_class,
    parse_report,
    route_from_url,
)
from lens_agent.config import LensAgentConfig
from lens_agent.models import LogEntry, PerformanceSnapshot, RawBugReport, UserAction


class TestExtractErrorLocations:
    """Stack frames from the common trace formats."""

    def test_node_chrome_frame(self) -> None:
        frames = extract_error_locations(
            "TypeError: x is undefined\n"
            "    at handleSubmit (http://localhost:3000/src/components/Form.tsx:42:15)"
        )
        assert len(frames) == 1
        assert frames[0].file == "Form.tsx"
        assert (frames[0].line, frames[0].column) == (42, 15)
        assert frames[0].function == "handleSubmit"

    def test_firefox_frame(self) -> None:
        frames = extract_error_locations("handleClick@http://localhost:3000/src/Button.js:10:5")
        assert frames[0].file == "Button.js"
        assert frames[0].function == "handleClick"

    def test_python_frame(self) -> None:
        frames = extract_error_locations('File "app/views.py", line 42, in checkout')
        assert frames[0].file == "views.py"
        assert frames[0].line == 42
        assert frames[0].function == "checkout"

    def test_generic_file_line(self) -> None:
        frames = extract_error_locations("failed in src/utils/format.ts:7")
        assert frames[0].file == "format.ts"
        assert frames[0].line == 7
        assert frames[0].column is None

    def test_same_file_reported_once(self) -> None:
        frames = extract_error_locations(
            "at a (http://host/src/cart.ts:1:1)\nat b (http://host/src/cart.ts:9:2)"
        )
        assert [f.file for f in frames] == ["cart.ts"]

    def test_no_frames(self) -> None:
        assert extract_error_locations("something went wrong") == []


class TestKeywords:
    """Free-text and structured keyword extraction."""

    def test_free_text_keywords(self) -> None:
        keywords = extract_keywords(
            "TypeError in src/components/LoginForm.tsx when calling handleSubmit"
        )
        assert {"TypeError", "src/components/LoginForm.tsx", "LoginForm", "handleSubmit"} <= keywords

    def test_utility_classes(self) -> None:
        assert is_utility_class("flex")
        assert is_utility_class("w-full")
        assert is_utility_class("hover:bg-blue-500")
        assert not is_utility_class("checkout-form")

    def test_route(self) -> None:
        assert route_from_url("https://shop.example.com/checkout/pay?x=1") == "/checkout/pay"
        assert route_from_url("https://shop.example.com") == "/"
        assert route_from_url("") is None

    def test_search_keywords_from_capture(self) -> None:
        report = RawBugReport(
            url="https://shop.example.com/checkout",
            actions=[
                UserAction(action="click", target="form.checkout-form > button.flex.submit-order", timestamp=1)
            ],
            logs=[
                LogEntry(level="error", message="PaymentError: card declined", timestamp=2),
                LogEntry(level="info", type="NETWORK", message="POST https://api.example.com/orders/confirm"),
            ],
        )
        keywords = extract_search_keywords(report)
        assert {"checkout", "checkout-form", "submit-order", "form", "PaymentError", "orders", "confirm"} <= keywords
        assert "flex" not in keywords

    def test_root_route_adds_index_keywords(self) -> None:
        keywords = extract_search_keywords(RawBugReport(url="http://localhost:3000/"))
        assert {"index", "home", "page", "main"} <= keywords


class TestParseReport:
    """parse_report promotes error logs to detected errors."""

    def test_detects_errors_with_frames(self, sample_report: RawBugReport) -> None:
        parsed = parse_report(sample_report)
        assert len(parsed.errors) == 1
        error = parsed.errors[0]
        assert error.timestamp == 1000
        assert error.stack_frames[0].file == "total.ts"
        assert parsed.route == "/checkout"
        assert "TypeError" in parsed.keywords
        assert "1 error(s)" in parsed.summary

    def test_error_without_timestamp(self) -> None:
        errors = detect_errors([LogEntry(level="error", message="boom")])
        assert errors[0].timestamp is None

    def test_no_errors(self) -> None:
        parsed = parse_report(RawBugReport(description="Layout looks off"))
        assert parsed.errors == []
        assert parsed.summary == "Layout looks off"

    def test_untitled_empty_report_summary(self) -> None:
        assert parse_report(RawBugReport()).summary == "No description provided."


class TestCategoryHint:
    """Web vitals above the hint thresholds suggest a category."""

    def test_slow_lcp_is_performance(self, settings: LensAgentConfig) -> None:
        assert infer_category_hint(PerformanceSnapshot(lcp=3000), settings) == "performance"

    def test_layout_shift_is_ui(self, settings: LensAgentConfig) -> None:
        assert infer_category_hint(PerformanceSnapshot(lcp=800, cls=0.3), settings) == "ui_ux"

    def test_healthy_vitals_no_hint(self, settings: LensAgentConfig) -> None:
        snapshot = PerformanceSnapshot(lcp=800, fid=10, cls=0.01, ttfb=100)
        assert infer_category_hint(snapshot, settings) is None

    def test_no_snapshot(self, settings: LensAgentConfig) -> None:
        assert infer_category_hint(None, settings) is None


class TestReportDigest:
    """The digest carries every captured signal."""

    def test_sections_present(self, sample_report: RawBugReport) -> None:
        digest = build_report_digest(sample_report)
        assert "## User Description" in digest
        assert "## Console Logs" in digest
        assert "CLICK on submit-button" in digest
        assert "calculateTotal" in digest

    def test_empty_report(self) -> None:
        assert build_report_digest(RawBugReport()) == ""
