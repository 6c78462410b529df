from __future__ import annotations

import xml.etree.ElementTree as ET
from pathlib import Path
from typing import List

import pytest

pytest_plugins = ["pytester"]


def parse_report(path: Path) -> ET.Element:
    """Parse a report file, failing the test if it is not well formed."""

    return ET.parse(path).getroot()


def case_names(root: ET.Element) -> List[str]:
    return [case.get("name") for case in root.iter("testcase")]


@pytest.fixture
def report_path(tmp_path: Path) -> Path:
    return tmp_path / "junit-report.xml"
