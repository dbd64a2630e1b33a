import math

import numpy as np
import pytest

from Schemas.statistician import ChartType
from core.final_report_engine import (
    build_result,
    cell,
    fmt,
    magnitude,
    make_chart,
    make_table,
    p_text,
    render_markdown,
)


def test_cell_normalises_values():
    assert cell(None) == "-"
    assert cell(float("nan")) == "-"
    assert cell(math.inf) == "-"
    assert cell(np.float64(0.25)) == 0.25
    assert type(cell(np.int64(3))) is int
    assert cell(np.bool_(True)) == "Yes"
    assert cell(False) == "No"
    assert cell("A") == "A"


def test_make_table_fills_every_header():
    table = make_table("T", ["a", "b"], [{"a": 1.5, "ignored": 2}])
    assert table.rows == [{"a": 1.5, "b": "-"}]
    assert table.notes == []


def test_p_text_and_fmt():
    assert p_text(0.0004) == "p < .001"
    assert p_text(0.0342) == "p = .034"
    assert p_text(None) == "p = -"
    assert fmt(1.23456) == "1.23"
    assert fmt(float("nan")) == "-"


def test_magnitude_labels():
    cutoffs = (0.2, 0.5, 0.8)
    assert magnitude(-0.9, cutoffs) == "large"
    assert magnitude(0.3, cutoffs) == "small"
    assert magnitude(0.1, cutoffs) == "negligible"
    assert magnitude(None, cutoffs) == "undetermined"


def test_render_markdown():
    result = build_result(
        "descriptives",
        [make_table("Descriptive Statistics", ["Variable", "Mean", "N"], [{"Variable": "x", "Mean": 2.0, "N": 4}],
                    ["A note"])],
        "The mean of x was 2.00.",
        ["1 row(s) excluded because of missing values in: x."],
        charts=[make_chart(ChartType.BAR, "Means", [{"name": "x", "value": 2.0}])],
        n_observations=4,
    )
    text = render_markdown(result)

    assert text.startswith("## Descriptive Statistics")
    assert "| Variable | Mean | N |" in text
    assert "| x | 2.000 | 4 |" in text
    assert "*A note*" in text
    assert "**Summary:** The mean of x was 2.00." in text
    assert "- 1 row(s) excluded" in text


def test_unknown_table_title_raises():
    result = build_result("descriptives", [], "", [])
    with pytest.raises(KeyError):
        result.table("Model Summary")
