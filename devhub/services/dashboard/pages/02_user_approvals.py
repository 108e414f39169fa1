"""
Dashboard Page 2: User Approvals
Merged user list with approve / reject for registrations and
extend / tier changes for active accounts.
"""

import os
from datetime import date, timedelta

import pandas as pd
import streamlit as st
from utils.dashboard_utils import STATUS_FILTERS, STATUS_ICON, expiry_label, filter_users, hub_call, safe_get
from utils.ui_narrative import render_filter_summary, render_page_header

HUB_URL = os.getenv("HUB_URL", st.session_state.get("HUB_URL", "http://localhost:8500"))

TIERS = ["free", "pro", "enterprise"]
PLANS = ["weekly", "monthly", "yearly"]

st.set_page_config(page_title="User Approvals | DevHub", layout="wide")
st.title("User Approvals")
render_page_header(
    outcome="Everyone who signed up to a connected app, pending or active, in one list.",
    next_steps=["Approve pending sign-ups to create their account", "Extend subscriptions that are about to lapse"],
)


def _act(method: str, path: str, body: dict | None = None, success: str = "Done.") -> None:
    ok, payload = hub_call(method, f"{HUB_URL}{path}", body)
    if ok:
        st.success(success)
        st.rerun()
    else:
        st.error(payload)


# ── Toolbar ───────────────────────────────────────────────────────────────────
bar_l, bar_m, bar_r = st.columns([2, 1, 1])
with bar_m:
    if st.button("Sync now"):
        ok, payload = hub_call("POST", f"{HUB_URL}/api/users/refresh")
        if ok:
            st.toast(f"Synced {payload['user_count']} user(s) from {len(payload['synced'])} app(s).")
        else:
            st.error(payload)

users = safe_get(f"{HUB_URL}/api/users", []) or []
apps  = safe_get(f"{HUB_URL}/api/connections", []) or []
pending_regs = [u for u in users if u.get("status") == "pending" and u.get("origin") == "registrations"]

with bar_r:
    if st.button(f"Approve all ({len(pending_regs)})", type="primary", disabled=not pending_regs):
        ok, payload = hub_call("POST", f"{HUB_URL}/api/users/approve-all", timeout=60.0)
        if ok:
            st.success(f"Approved {len(payload['approved'])} user(s).")
            for f in payload["failed"]:
                st.error(f"{f['user_id']}: {f['kind']} - {f['message']}")
        else:
            st.error(payload)

# ── Filters ───────────────────────────────────────────────────────────────────
f1, f2, f3 = st.columns([2, 3, 2])
with f1:
    status = st.radio("Status", STATUS_FILTERS, horizontal=True, key="ua_status")
with f2:
    search = st.text_input("Search name or email", key="ua_search")
with f3:
    app_names = {a["id"]: a["name"] for a in apps}
    app_choice = st.selectbox("App", ["all"] + list(app_names), format_func=lambda i: app_names.get(i, "All apps"))

scoped = users if app_choice == "all" else [u for u in users if u.get("source_app_id") == app_choice]
visible = filter_users(scoped, status, search)
render_filter_summary(len(scoped), len(visible), status, search)

if not users:
    st.info("No users loaded. Add an application under Database Connections.")
    st.stop()

# ── Table ─────────────────────────────────────────────────────────────────────
df = pd.DataFrame([
    {
        "Status":     f"{STATUS_ICON.get(u['status'], '⚪')} {u['status']}",
        "Name":       u["name"],
        "Email":      u["email"],
        "Phone":      u.get("phone") or "",
        "App":        u["source_app_name"],
        "Table":      u["origin"],
        "Tier":       u["subscription_tier"],
        "Expiry":     expiry_label(u.get("subscription_end")),
        "Registered": (u.get("registered_at") or "")[:10],
        "Last Active": (u.get("last_active") or "")[:19].replace("T", " "),
        "Password":   u.get("password") or "",
    }
    for u in visible
])
st.dataframe(df, use_container_width=True, hide_index=True)

st.divider()

# ── Actions ───────────────────────────────────────────────────────────────────
for u in visible:
    uid = u["id"]
    with st.expander(f"{STATUS_ICON.get(u['status'], '⚪')} {u['name']} · {u['email']} · {u['source_app_name']}"):
        st.caption(f"`{uid}` · {u['origin']} · tier {u['subscription_tier']}")
        if u.get("reason"):
            st.markdown(f"> {u['reason']}")

        if u["origin"] == "registrations":
            c1, c2, c3, c4 = st.columns([2, 2, 1, 1])
            with c1:
                expiry = st.date_input("Subscription end", value=date.today() + timedelta(days=30), key=f"exp_{uid}")
            with c2:
                tier = st.selectbox("Tier", TIERS, index=TIERS.index(u["subscription_tier"]), key=f"tier_{uid}")
            with c3:
                if st.button("Approve", key=f"approve_{uid}", type="primary"):
                    _act("POST", f"/api/users/{uid}/approve",
                         {"subscription_end": f"{expiry.isoformat()}T23:59:59+00:00", "tier": tier},
                         success=f"Approved {u['email']}.")
            with c4:
                if u["status"] != "suspended" and st.button("Reject", key=f"reject_{uid}"):
                    _act("POST", f"/api/users/{uid}/reject", success=f"Rejected {u['email']}.")
        else:
            c1, c2, c3, c4 = st.columns([2, 1, 2, 1])
            with c1:
                plan = st.selectbox("Extend by", PLANS, index=1, key=f"plan_{uid}")
            with c2:
                if st.button("Extend", key=f"extend_{uid}", type="primary"):
                    _act("POST", f"/api/users/{uid}/extend", {"plan": plan}, success=f"Extended {u['email']} ({plan}).")
            with c3:
                tier = st.selectbox("Tier", TIERS, index=TIERS.index(u["subscription_tier"]), key=f"tier_{uid}")
            with c4:
                if st.button("Set tier", key=f"settier_{uid}", disabled=tier == u["subscription_tier"]):
                    _act("POST", f"/api/users/{uid}/tier", {"tier": tier}, success=f"{u['email']} is now {tier}.")
