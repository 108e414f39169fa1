"""
DevHub Dashboard - Main Entry Point
Streamlit multi-page app with sidebar navigation.
"""

import os
import httpx
import streamlit as st

st.set_page_config(
    page_title="DevHub - Developer Admin Console",
    page_icon="🛠️",
    layout="wide",
    initial_sidebar_state="expanded",
)

# ── Service URL (from environment) ───────────────────────────────────────────
HUB_URL = os.getenv("HUB_URL", "http://localhost:8500")

# Store the URL in session state so pages can access it
st.session_state["HUB_URL"] = HUB_URL


def _health(url: str) -> dict | None:
    try:
        r = httpx.get(f"{url}/health", timeout=2.0)
        if r.status_code == 200:
            return r.json()
    except httpx.HTTPError:
        pass
    return None


# ── Sidebar ───────────────────────────────────────────────────────────────────
with st.sidebar:
    st.title("🛠️ DevHub")
    st.caption("Registrations, approvals and connected apps")
    st.divider()

    st.subheader("Service Status")
    h = _health(HUB_URL)
    if h:
        st.success(f"✅ Hub v{h.get('version', '?')}")
    else:
        st.error("❌ Hub (:8500)")

    st.divider()
    st.caption(f"`{HUB_URL}`")


# ── Main landing page ─────────────────────────────────────────────────────────
st.title("DevHub")
st.markdown(
    "**One console for every app you ship.** "
    "Pending sign-ups and active accounts from each connected Supabase project, merged into one list."
)

st.divider()

stats = None
if h:
    try:
        r = httpx.get(f"{HUB_URL}/api/stats", timeout=4.0)
        stats = r.json() if r.status_code == 200 else None
    except httpx.HTTPError:
        stats = None

if stats:
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Users", stats["total_users"])
    c2.metric("Pending Approvals", stats["pending_approvals"])
    c3.metric("Connected Apps", stats["active_apps"])
    c4.metric("Monthly Revenue", f"${stats['monthly_revenue']:,}")
else:
    st.warning("Hub is unreachable. Start it with `uvicorn devhub.services.hub.main:app --port 8500`.")

st.info("Navigate using the **Pages** menu in the left sidebar.")
