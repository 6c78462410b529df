from __future__ import annotations

import logging

from conftest import case_names, parse_report
from junitreport.writer import INFERRED_CASE, PROLOG, UNKNOWN_SUITE, ProblemKind, ReportWriter


def test_document_layout(report_path):
    writer = ReportWriter()
    assert writer.open(report_path)
    writer.open_suite("com.example.CalcTest")
    writer.open_case("com.example.CalcTest", "testAdd")
    writer.add_problem(ProblemKind.FAILURE, "expected 3", "AssertionError", "trace line")
    writer.close_case()
    writer.open_case("com.example.CalcTest", "testSub")
    writer.close_case()
    assert writer.finalize() is None

    text = report_path.read_text(encoding="utf-8")
    assert text == (
        PROLOG
        + "\n<testsuites>"
        + '\n  <testsuite name="com.example.CalcTest">'
        + '\n    <testcase classname="com.example.CalcTest" name="testAdd">'
        + '\n      <failure message="expected 3" type="AssertionError">trace line</failure>'
        + "\n    </testcase>"
        + '\n    <testcase classname="com.example.CalcTest" name="testSub"></testcase>'
        + "\n  </testsuite>"
        + "\n</testsuites>\n"
    )


def test_prolog_declares_standalone_utf8(report_path):
    writer = ReportWriter()
    writer.open(report_path)
    writer.finalize()

    assert report_path.read_text(encoding="utf-8").startswith(
        "<?xml version='1.0' encoding='utf-8' standalone='yes'?>"
    )
    assert parse_report(report_path).tag == "testsuites"


def test_report_is_readable_before_finalize(report_path):
    writer = ReportWriter()
    writer.open(report_path)
    writer.open_suite("S")
    writer.open_case("S", "first")

    assert 'name="first"' in report_path.read_text(encoding="utf-8")
    writer.finalize()


def test_flushed_case_tag_is_complete_on_disk(report_path):
    writer = ReportWriter()
    writer.open(report_path)
    writer.open_suite("S")
    writer.open_case("S", "first")

    assert report_path.read_text(encoding="utf-8").endswith('<testcase classname="S" name="first">')
    writer.finalize()


def test_reopening_the_open_suite_emits_nothing(report_path):
    writer = ReportWriter()
    writer.open(report_path)
    writer.open_suite("S")
    writer.open_case("S", "a")
    writer.close_case()
    writer.open_suite("S")
    writer.open_case("S", "b")
    writer.close_case()
    writer.finalize()

    root = parse_report(report_path)
    assert len(root.findall("testsuite")) == 1
    assert case_names(root) == ["a", "b"]


def test_switching_suite_closes_open_case_and_suite(report_path):
    writer = ReportWriter()
    writer.open(report_path)
    writer.open_suite("One")
    writer.open_case("One", "left_open")
    writer.open_suite("Two")
    writer.open_case("Two", "b")
    writer.finalize()

    root = parse_report(report_path)
    suites = root.findall("testsuite")
    assert [suite.get("name") for suite in suites] == ["One", "Two"]
    assert [case.get("name") for case in suites[0]] == ["left_open"]


def test_case_without_suite_gets_unknown_suite(report_path):
    writer = ReportWriter()
    writer.open(report_path)
    writer.open_case("a.Suite", "orphan")
    writer.finalize()

    suite = parse_report(report_path).find("testsuite")
    assert suite.get("name") == UNKNOWN_SUITE
    assert suite.find("testcase").get("classname") == "a.Suite"


def test_problem_without_case_opens_inferred_case(report_path):
    writer = ReportWriter()
    writer.open(report_path)
    writer.add_problem(ProblemKind.ERROR, "crash", "Native", "backtrace")
    writer.finalize()

    root = parse_report(report_path)
    suite = root.find("testsuite")
    assert suite.get("name") == UNKNOWN_SUITE
    case = suite.find("testcase")
    assert case.get("name") == INFERRED_CASE
    error = case.find("error")
    assert error.get("message") == "crash"
    assert error.text == "backtrace"


def test_problem_without_case_uses_open_suite(report_path):
    writer = ReportWriter()
    writer.open(report_path)
    writer.open_suite("S")
    writer.add_problem("error", "crash", "Native", "")
    writer.finalize()

    case = parse_report(report_path).find("testsuite/testcase")
    assert case.get("classname") == "S"
    assert case.find("error").text is None


def test_multiple_problems_append(report_path):
    writer = ReportWriter()
    writer.open(report_path)
    writer.open_suite("S")
    writer.open_case("S", "c")
    writer.add_problem(ProblemKind.FAILURE, "one", "AssertionError", "t1")
    writer.add_problem(ProblemKind.ERROR, "two", "RuntimeError", "t2")
    writer.finalize()

    case = parse_report(report_path).find("testsuite/testcase")
    assert [child.tag for child in case] == ["failure", "error"]


def test_close_case_without_open_case_is_harmless(report_path):
    writer = ReportWriter()
    writer.open(report_path)
    writer.close_case()
    writer.open_suite("S")
    writer.close_case()
    writer.finalize()

    assert parse_report(report_path).find("testsuite").get("name") == "S"


def test_markup_and_control_characters_are_escaped(report_path):
    writer = ReportWriter()
    writer.open(report_path)
    writer.open_suite("S")
    writer.open_case("S", "c")
    writer.add_problem(ProblemKind.FAILURE, 'a < b & "c"', "E", "line\x00 <tag> \x1b[0m")
    writer.finalize()

    failure = parse_report(report_path).find("testsuite/testcase/failure")
    assert failure.get("message") == 'a < b & "c"'
    assert failure.text == "line <tag> [0m"


def test_finalize_twice_is_a_noop(report_path):
    writer = ReportWriter()
    writer.open(report_path)
    writer.open_suite("S")
    writer.open_case("S", "c")
    writer.finalize()
    first = report_path.read_text(encoding="utf-8")

    assert writer.finalize() is None
    assert report_path.read_text(encoding="utf-8") == first
    assert first.count("</testsuites>") == 1


def test_calls_after_finalize_are_ignored(report_path):
    writer = ReportWriter()
    writer.open(report_path)
    writer.finalize()
    content = report_path.read_text(encoding="utf-8")

    writer.open_suite("Late")
    writer.open_case("Late", "c")
    writer.add_problem(ProblemKind.ERROR, "m", "T", "t")

    assert report_path.read_text(encoding="utf-8") == content


def test_unwritable_path_makes_writer_inert(tmp_path, caplog):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    writer = ReportWriter()

    with caplog.at_level(logging.ERROR, logger="junitreport.writer"):
        assert not writer.open(blocker / "report.xml")

    assert writer.inert
    assert "Unable to open report file" in caplog.text
    writer.open_suite("S")
    writer.open_case("S", "c")
    writer.add_problem(ProblemKind.ERROR, "m", "T", "t")
    writer.close_case()
    assert writer.finalize() is None


def test_write_failure_is_logged_and_absorbed(report_path, caplog):
    writer = ReportWriter()
    writer.open(report_path)
    writer._handle.close()

    with caplog.at_level(logging.ERROR, logger="junitreport.writer"):
        writer.open_suite("S")

    assert writer.inert
    assert "Failed to open suite S" in caplog.text
    writer.open_case("S", "c")
    writer.finalize()


def test_open_creates_missing_directories(tmp_path):
    path = tmp_path / "reports" / "nested" / "out.xml"
    writer = ReportWriter()

    assert writer.open(path)
    writer.finalize()
    assert parse_report(path).tag == "testsuites"
