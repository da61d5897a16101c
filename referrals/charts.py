from __future__ import annotations

from typing import Any, Dict

import altair as alt
import pandas as pd

alt.data_transformers.disable_max_rows()


def to_vega_spec(chart: alt.Chart) -> Dict[str, Any]:
    """Convert an Altair chart into a Vega-Lite spec dict (JSON-serializable)."""
    return chart.to_dict()


def monthly_referrals_chart(monthly: pd.DataFrame) -> Dict[str, Any]:
    hover = alt.selection_point(fields=["month"], on="mouseover", empty="all")
    bars = (
        alt.Chart(monthly)
        .mark_bar()
        .encode(
            x=alt.X("month:O", title="Month", axis=alt.Axis(grid=False)),
            y=alt.Y("referrals:Q", title="Referrals", axis=alt.Axis(format="d", gridDash=[4, 4], domain=False, ticks=False)),
            opacity=alt.condition(hover, alt.value(1), alt.value(0.5)),
            tooltip=[alt.Tooltip("month:O", title="Month"), alt.Tooltip("referrals:Q", title="Referrals", format=",")],
        )
        .add_params(hover)
        .properties(height=260)
    )
    return to_vega_spec(bars)
