"""
DevHub Dashboard - page header and filter summary helpers.

Pages import:
    from utils.ui_narrative import render_page_header, render_filter_summary
"""

from __future__ import annotations

import streamlit as st


def render_page_header(
    outcome: str,
    next_steps: list[str],
    cta: dict | None = None,
) -> None:
    """
    Caption under the page title, a collapsed list of next steps and an
    optional link {"label": str, "page": str} to the next page in the flow.
    """
    st.caption(outcome)

    with st.expander("Next steps", expanded=False):
        for item in next_steps:
            st.markdown(f"- {item}")

    if cta:
        st.page_link(cta["page"], label=f"→ {cta['label']}")


def render_filter_summary(total: int, visible: int, status: str, search: str) -> None:
    """One-liner shown only when the current filters hide something."""
    hidden = total - visible
    if hidden <= 0:
        return
    parts = []
    if status and status != "all":
        parts.append(f"status **{status}**")
    if search:
        parts.append(f"search `{search}`")
    st.caption(f"Showing **{visible}** of {total} user(s) · {hidden} hidden by {' and '.join(parts)}.")
