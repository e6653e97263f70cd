from __future__ import annotations

import sys
from pathlib import Path

import pandas as pd
import streamlit as st


# Streamlit Cloud runs this file with a different working directory.
# Ensure the repository root (parent of `student_flags/`) is on sys.path so
# `student_flags.*` imports resolve without an install.
_REPO_ROOT = Path(__file__).resolve().parents[2]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from student_flags.config.settings import settings
from student_flags.dashboard.ui_helpers import df_to_csv_download, flag_badge, flag_hex, kpi_card, severity_badge
from student_flags.database.db_manager import DBManager
from student_flags.database.record_store import SQLiteRecordStore
from student_flags.engine.aggregator import evaluate_student_flags, evaluate_students, summarize_flags
from student_flags.engine.rule_store import JsonRuleRepository, RuleNotFoundError
from student_flags.engine.rules import (
    CATEGORY_PARAMETERS,
    DEFAULT_COLORS,
    Category,
    Condition,
    FlagColor,
    RuleValidationError,
    form_defaults,
)


st.set_page_config(page_title="Student Flags", layout="wide")

st.markdown(
    """
    <style>
        .block-container { padding-top: 1.25rem; }
        div[data-testid="stMetric"] { border: 1px solid rgba(0,0,0,0.08); padding: 14px; border-radius: 12px; }
        .muted { opacity: 0.78; font-size: 0.9rem; }
    </style>
    """,
    unsafe_allow_html=True,
)


@st.cache_resource
def _cached_store() -> SQLiteRecordStore:
    dbm = DBManager(settings.database_path)
    dbm.init_db()
    return SQLiteRecordStore(dbm)


store = _cached_store()
repo = JsonRuleRepository(settings.rules_path)

st.title("Student Flags")
st.markdown("<div class='muted'>Rule-based flags highlighting students who may need support</div>", unsafe_allow_html=True)

try:
    rules = repo.list_rules()
except RuleValidationError as e:
    st.error(f"Could not load flag rules: {e}")
    st.stop()
active_rules = [r for r in rules if r.is_active]

page = st.tabs(["Flagged students", "Student profile", "Flag rules"])

with st.sidebar:
    st.header("Filters")
    query = st.text_input("Search (name or ID)", value="")
    category_filter = st.multiselect(
        "Categories",
        [c.value for c in Category],
        default=[c.value for c in Category],
        format_func=lambda v: CATEGORY_PARAMETERS[Category(v)].label,
    )


with page[0]:
    reports = evaluate_students(store, active_rules)

    rows: list[dict[str, object]] = []
    for report in reports:
        summary = summarize_flags(report.flags)
        shown = {c: s for c, s in summary.items() if c.value in category_filter}
        if not shown:
            continue
        rows.append(
            {
                "student_id": str(report.student_id),
                "name": report.student_name,
                "grade": report.grade,
                "class": report.class_name,
                "flags": "  ".join(flag_badge(s.color, CATEGORY_PARAMETERS[c].label) for c, s in shown.items()),
                "count": sum(len(s.flags) for s in shown.values()),
            }
        )
    df = pd.DataFrame(rows, columns=["student_id", "name", "grade", "class", "flags", "count"])
    if query.strip():
        q = query.strip()
        df = df[
            df["student_id"].astype(str).str.contains(q, case=False, na=False, regex=False)
            | df["name"].astype(str).str.contains(q, case=False, na=False, regex=False)
        ]

    k1, k2, k3 = st.columns(3)
    with k1:
        kpi_card("Students monitored", len(store.list_students()))
    with k2:
        kpi_card("Flagged students", len(df))
    with k3:
        kpi_card("Active rules", len(active_rules))

    if df.empty:
        st.info("No flagged students. Add or activate rules in the Flag rules tab.")
    else:
        st.dataframe(df.sort_values("count", ascending=False), width="stretch", hide_index=True)
        df_to_csv_download(df, "Download flagged students CSV", "flagged_students.csv")


with page[1]:
    students = store.list_students()
    if not students:
        st.warning("No students loaded. Put CSV exports in the data directory and run main.py.")
    else:
        labels = {f"{s.full_name} ({s.id})": s.id for s in students}
        choice = st.selectbox("Student", options=list(labels))
        student_id = labels[choice]
        flags = evaluate_student_flags(student_id, store, active_rules)
        summary = summarize_flags(flags)
        if not summary:
            st.success("No active rule flags this student.")
        for category, cat_summary in summary.items():
            st.markdown(
                f"<div style='padding:12px;border-radius:12px;border-left:6px solid {flag_hex(cat_summary.color)}'>"
                f"<b>{CATEGORY_PARAMETERS[category].label}</b>"
                f"<div class='muted'>{cat_summary.message}</div></div>",
                unsafe_allow_html=True,
            )
            for flag in cat_summary.flags:
                st.write(f"- **{flag.flag_name}** {severity_badge(flag.severity)} {flag_badge(flag.color)}")


def _split_csv(text: str) -> list[str]:
    return [part.strip() for part in text.split(",") if part.strip()]


def _threshold_or_min(rule, params) -> float:
    try:
        value = rule.threshold_value()
    except RuleValidationError:
        return float(params.threshold_min)
    return min(max(value, float(params.threshold_min)), float(params.threshold_max))


with page[2]:
    st.subheader("Rules")
    for rule in rules:
        c1, c2, c3 = st.columns([4, 1, 1])
        status = "active" if rule.is_active else "inactive"
        c1.markdown(f"{flag_badge(rule.display_color)} **{rule.name}** ({status})  \n{rule.description}")
        if c2.button("Toggle", key=f"toggle_{rule.id}", use_container_width=True):
            try:
                repo.toggle_rule(rule.id)
            except RuleNotFoundError:
                st.error("Rule no longer exists")
            st.rerun()
        if c3.button("Delete", key=f"delete_{rule.id}", use_container_width=True):
            try:
                repo.delete_rule(rule.id)
            except RuleNotFoundError:
                st.error("Rule no longer exists")
            st.rerun()

        rule_params = CATEGORY_PARAMETERS[rule.category]
        with st.expander(f"Edit {rule.name}"):
            with st.form(f"edit_{rule.id}"):
                edit_name = st.text_input("Name", value=rule.name)
                edit_condition = st.selectbox(
                    "Condition",
                    [c.value for c in Condition],
                    index=list(Condition).index(rule.condition),
                )
                edit_threshold = st.number_input(
                    rule_params.threshold_label,
                    min_value=float(rule_params.threshold_min),
                    max_value=float(rule_params.threshold_max),
                    value=_threshold_or_min(rule, rule_params),
                    step=float(rule_params.threshold_step),
                )
                edit_color = st.selectbox(
                    "Color",
                    [c.value for c in FlagColor],
                    index=list(FlagColor).index(rule.display_color),
                )
                edit_grades = st.text_input("Grades (comma separated, optional)", value=", ".join(rule.filters.grades))
                edit_classes = st.text_input(
                    "Classes (comma separated, optional)", value=", ".join(rule.filters.classes)
                )
                save_edit = st.form_submit_button("Update rule")
            if save_edit:
                try:
                    repo.edit_rule(
                        rule.id,
                        name=edit_name.strip() or rule.name,
                        threshold=edit_threshold,
                        condition=edit_condition,
                        color=edit_color,
                        grades=_split_csv(edit_grades),
                        classes=_split_csv(edit_classes),
                    )
                except (RuleValidationError, RuleNotFoundError) as e:
                    st.error(str(e))
                else:
                    st.success("Rule updated")
                    st.rerun()

    st.divider()
    st.subheader("Create rule")
    category = Category(
        st.selectbox(
            "Category",
            [c.value for c in Category],
            format_func=lambda v: CATEGORY_PARAMETERS[Category(v)].label,
        )
    )
    params = CATEGORY_PARAMETERS[category]
    st.caption(params.help_text)
    preset = st.selectbox(
        "Preset",
        ["Custom"] + [label for label, _, _ in params.suggestions],
        key=f"preset_{category.value}",
    )
    preset_condition, preset_threshold = form_defaults(category, preset)
    with st.form("create_rule", clear_on_submit=True):
        name = st.text_input("Name", value="" if preset == "Custom" else preset)
        condition = st.selectbox(
            "Condition",
            [c.value for c in Condition],
            index=list(Condition).index(preset_condition),
        )
        threshold = st.number_input(
            params.threshold_label,
            min_value=float(params.threshold_min),
            max_value=float(params.threshold_max),
            value=preset_threshold,
            step=float(params.threshold_step),
        )
        color = st.selectbox(
            "Color",
            [c.value for c in FlagColor],
            index=list(FlagColor).index(DEFAULT_COLORS[category]),
        )
        grades = st.text_input("Grades (comma separated, optional)")
        classes = st.text_input("Classes (comma separated, optional)")
        submitted = st.form_submit_button("Save rule")

    if submitted:
        try:
            repo.create_rule(
                name=name.strip() or params.label,
                category=category,
                threshold=threshold,
                condition=condition,
                color=color,
                grades=_split_csv(grades),
                classes=_split_csv(classes),
            )
        except RuleValidationError as e:
            st.error(str(e))
        else:
            st.success("Rule saved")
            st.rerun()
