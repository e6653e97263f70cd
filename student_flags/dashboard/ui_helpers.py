from __future__ import annotations

import pandas as pd
import streamlit as st

from student_flags.engine.rules import FlagColor


_COLOR_HEX: dict[FlagColor, str] = {
    FlagColor.RED: "#DC2626",
    FlagColor.ORANGE: "#EA580C",
    FlagColor.YELLOW: "#F59E0B",
    FlagColor.BLUE: "#2563EB",
    FlagColor.GREEN: "#16A34A",
}

_COLOR_EMOJI: dict[FlagColor, str] = {
    FlagColor.RED: "🔴",
    FlagColor.ORANGE: "🟠",
    FlagColor.YELLOW: "🟡",
    FlagColor.BLUE: "🔵",
    FlagColor.GREEN: "🟢",
}


def flag_badge(color: FlagColor | None, label: str = "") -> str:
    if color is None:
        return label
    return f"{_COLOR_EMOJI[color]} {label}".strip()


def flag_hex(color: FlagColor | None) -> str:
    return _COLOR_HEX[color] if color else "#6B7280"


def severity_badge(severity: str) -> str:
    severity = (severity or "").lower()
    if severity == "high":
        return "🔴 HIGH"
    if severity == "medium":
        return "🟠 MEDIUM"
    return "🟢 LOW"


def df_to_csv_download(df: pd.DataFrame, label: str, file_name: str) -> None:
    st.download_button(
        label=label,
        data=df.to_csv(index=False).encode("utf-8"),
        file_name=file_name,
        mime="text/csv",
    )


def kpi_card(label: str, value: object, delta: object | None = None, help_text: str | None = None) -> None:
    st.metric(label=label, value=value, delta=delta, help=help_text)
