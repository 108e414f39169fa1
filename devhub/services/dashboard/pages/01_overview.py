"""
Dashboard Page 1: Overview
4 KPI cards, registrations-per-day chart, per-app breakdown, recent users.
"""

import os

import pandas as pd
import plotly.graph_objects as go
import streamlit as st
from utils.dashboard_utils import DARK_LAYOUT, STATUS_ICON, registrations_per_day, safe_get
from utils.ui_narrative import render_page_header

HUB_URL = os.getenv("HUB_URL", st.session_state.get("HUB_URL", "http://localhost:8500"))

st.set_page_config(page_title="Overview | DevHub", layout="wide")
st.title("Overview")
render_page_header(
    outcome="How many people are waiting, how many are paying, and which apps are feeding the list.",
    next_steps=["Review pending sign-ups in User Approvals", "Connect another app in Database Connections"],
    cta={"label": "User Approvals", "page": "pages/02_user_approvals.py"},
)

if st.button("Refresh"):
    st.rerun()

# ── Fetch data ────────────────────────────────────────────────────────────────
stats = safe_get(f"{HUB_URL}/api/stats", {}) or {}
users = safe_get(f"{HUB_URL}/api/users", []) or []
apps  = safe_get(f"{HUB_URL}/api/connections", []) or []

# ── KPI Cards ─────────────────────────────────────────────────────────────────
st.subheader("Key Metrics")
k1, k2, k3, k4 = st.columns(4)
k1.metric("Total Users", stats.get("total_users", len(users)))
k2.metric("Pending Approvals", stats.get("pending_approvals", 0))
k3.metric("Active Apps", f"{stats.get('active_apps', 0)} / {len(apps)}")
k4.metric("Monthly Revenue", f"${stats.get('monthly_revenue', 0):,}")

st.divider()

# ── Charts ────────────────────────────────────────────────────────────────────
chart_l, chart_r = st.columns(2)

with chart_l:
    st.subheader("Registrations per Day")
    per_day = registrations_per_day(users)
    if per_day:
        fig = go.Figure(go.Bar(
            x=[d for d, _ in per_day],
            y=[n for _, n in per_day],
            marker_color="#3b82f6",
        ))
        fig.update_layout(
            **DARK_LAYOUT,
            margin=dict(t=20, b=40, l=20, r=20),
            height=300,
            yaxis_title="Sign-ups",
        )
        st.plotly_chart(fig, use_container_width=True)
    else:
        st.info("No registration timestamps yet.")

with chart_r:
    st.subheader("Users by App")
    if users:
        by_app = pd.DataFrame(users).groupby(["source_app_name", "status"]).size().unstack(fill_value=0)
        fig2 = go.Figure()
        for status, color in (("active", "#28a745"), ("pending", "#ffc107"), ("suspended", "#dc3545")):
            if status in by_app.columns:
                fig2.add_trace(go.Bar(name=status, x=list(by_app.index), y=list(by_app[status]), marker_color=color))
        fig2.update_layout(**DARK_LAYOUT, barmode="stack", margin=dict(t=20, b=40, l=20, r=20), height=300)
        st.plotly_chart(fig2, use_container_width=True)
    else:
        st.info("No users loaded. Connect an app first.")

st.divider()

# ── Recent Users ──────────────────────────────────────────────────────────────
st.subheader("Recent Users")
recent = sorted(users, key=lambda u: u.get("registered_at") or "", reverse=True)[:8]
if recent:
    for u in recent:
        icon = STATUS_ICON.get(u.get("status"), "⚪")
        ts = (u.get("registered_at") or "")[:19].replace("T", " ")
        st.markdown(
            f"{icon} `{ts or 'unknown'}` &nbsp; **{u.get('name')}** &nbsp; {u.get('email')} "
            f"&nbsp; `{u.get('source_app_name')}` &nbsp; `{u.get('subscription_tier')}`"
        )
else:
    st.info("No users yet.")
