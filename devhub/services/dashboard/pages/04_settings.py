"""
Dashboard Page 4: Settings
Effective configuration of the dashboard and hub, plus the recent audit trail.
"""

import os

import pandas as pd
import streamlit as st
from utils.dashboard_utils import OPERATOR, OPERATOR_KEY, safe_get

HUB_URL = os.getenv("HUB_URL", st.session_state.get("HUB_URL", "http://localhost:8500"))

st.set_page_config(page_title="Settings | DevHub", layout="wide")
st.title("Settings")
st.caption("Read-only view of how this console is configured. Change values through environment variables.")

health = safe_get(f"{HUB_URL}/health")

st.subheader("Dashboard")
st.markdown(
    f"""
| Setting | Value |
|---------|-------|
| `HUB_URL` | `{HUB_URL}` |
| `DEVHUB_OPERATOR` | `{OPERATOR}` |
| `DEVHUB_OPERATOR_KEY` | {"set" if OPERATOR_KEY else "not set"} |
| Hub | {f"v{health.get('version')}" if health else "unreachable"} |
"""
)

st.subheader("Hub environment")
st.markdown(
    """
| Variable | Default | Meaning |
|----------|---------|---------|
| `DATABASE_URL` | `sqlite:///./devhub.db` | Local state (connection registry, audit log) |
| `DEVHUB_POLL_INTERVAL_SECONDS` | `10` | Sync period, clamped to 5-10 s |
| `DEVHUB_REFRESH_DELAY_SECONDS` | `0.8` | Delay of the follow-up sync after a change |
| `DEVHUB_REMOTE_TIMEOUT_SECONDS` | `8` | Per-request timeout against connected apps |
| `DEVHUB_SHOW_PASSWORDS` | `false` | Return stored passwords unmasked |
| `REQUIRE_OPERATOR_KEY` | `false` | Require `X-Operator-Key` on changes |
"""
)

st.divider()

st.subheader("Recent operator actions")
audit = safe_get(f"{HUB_URL}/api/audit", [], {"limit": 50}) or []
if audit:
    df = pd.DataFrame(audit)[["timestamp", "actor", "action", "resource"]]
    st.dataframe(df, use_container_width=True, hide_index=True)
else:
    st.info("No actions recorded yet.")
