from __future__ import annotations

from typing import Any, Dict, List

import altair as alt
import pandas as pd

alt.data_transformers.disable_max_rows()

STEP_COLORS = {"Total": "#4a7c59", "Increase": "#1e4a5f", "Decrease": "#d97706"}


def to_vega_spec(chart: alt.TopLevelMixin) -> Dict[str, Any]:
    """Convert an Altair chart into a Vega-Lite spec dict (JSON-serializable)."""
    return chart.to_dict()


def waterfall_chart(steps: List[Dict[str, Any]], *, title: str = "", value_format: str = ",.0f") -> Dict[str, Any]:
    df = pd.DataFrame(steps)
    if df.empty:
        return to_vega_spec(alt.Chart(pd.DataFrame({"name": [], "value": []})).mark_bar())

    df["bar_top"] = df["bar_base"] + df["bar_height"]
    df["step_type"] = df.apply(
        lambda r: "Total" if r["kind"] == "endpoint" else ("Increase" if r["is_positive"] else "Decrease"),
        axis=1,
    )
    order = df["name"].tolist()

    base = alt.Chart(df).encode(x=alt.X("name:N", sort=order, title=None, axis=alt.Axis(labelAngle=0)))
    bars = base.mark_bar().encode(
        y=alt.Y("bar_base:Q", title=None, axis=alt.Axis(format="~s")),
        y2="bar_top:Q",
        color=alt.Color(
            "step_type:N",
            scale=alt.Scale(domain=list(STEP_COLORS), range=list(STEP_COLORS.values())),
            legend=None,
        ),
        tooltip=[
            alt.Tooltip("name:N", title="Step"),
            alt.Tooltip("value:Q", title="Value", format=value_format),
            alt.Tooltip("end:Q", title="Cumulative", format=value_format),
        ],
    )
    labels = base.mark_text(dy=-8, fontWeight="bold").encode(
        y="bar_top:Q",
        text=alt.Text("value:Q", format=value_format),
    )
    chart = alt.layer(bars, labels)
    if title:
        chart = chart.properties(title=title)
    return to_vega_spec(chart)
