"""
Dashboard Page 3: Database Connections
Registry of connected applications: add, edit, test and remove.
"""

import os

import pandas as pd
import streamlit as st
from utils.dashboard_utils import STATUS_ICON, hub_call, safe_get
from utils.ui_narrative import render_page_header

HUB_URL = os.getenv("HUB_URL", st.session_state.get("HUB_URL", "http://localhost:8500"))

DB_KINDS = ["supabase", "postgres", "mysql", "mongodb"]

st.set_page_config(page_title="Database Connections | DevHub", layout="wide")
st.title("Database Connections")
render_page_header(
    outcome="Which applications DevHub reads registrations from, and whether the last sync worked.",
    next_steps=["Add the REST URL and service key of a new project", "Test a connection after rotating its key"],
    cta={"label": "User Approvals", "page": "pages/02_user_approvals.py"},
)

if st.button("Refresh"):
    st.rerun()

apps = safe_get(f"{HUB_URL}/api/connections", []) or []

# ── KPI row ────────────────────────────────────────────────────────────────────
col1, col2, col3 = st.columns(3)
col1.metric("Applications", len(apps))
col2.metric("Connected", sum(1 for a in apps if a["status"] == "connected"))
col3.metric("Users Synced", sum(a.get("user_count", 0) for a in apps))

st.divider()

# ── Registry table ─────────────────────────────────────────────────────────────
if not apps:
    st.info("No applications connected yet. Add one below.")
else:
    rows = [
        {
            "Status":     f"{STATUS_ICON.get(a['status'], '⚪')} {a['status']}",
            "Name":       a["name"],
            "Kind":       a["db_kind"],
            "REST URL":   a.get("base_url") or "(not derivable)",
            "Key":        "set" if a.get("has_api_key") else "missing",
            "Tables":     f"{a['table_name']} / {a['users_table']}",
            "Users":      a.get("user_count", 0),
            "Last Sync":  (a.get("last_sync") or "never")[:19].replace("T", " "),
        }
        for a in apps
    ]
    st.dataframe(pd.DataFrame(rows), use_container_width=True, hide_index=True)

    for a in apps:
        aid = a["id"]
        with st.expander(f"{STATUS_ICON.get(a['status'], '⚪')} {a['name']}"):
            st.code(a.get("connection_string") or "", language="text")
            if a.get("description"):
                st.caption(a["description"])

            b1, b2, _ = st.columns([1, 1, 4])
            with b1:
                if st.button("Test", key=f"test_{aid}"):
                    ok, payload = hub_call("POST", f"{HUB_URL}/api/connections/{aid}/test")
                    if ok and payload["ok"]:
                        st.success("Connection OK.")
                    elif ok:
                        st.error(f"{payload.get('error')}: {payload.get('detail') or ''}")
                    else:
                        st.error(payload)
            with b2:
                if st.button("Delete", key=f"delete_{aid}"):
                    ok, payload = hub_call("DELETE", f"{HUB_URL}/api/connections/{aid}")
                    if ok:
                        st.success(f"Removed {a['name']} and {payload['users_removed']} cached user(s).")
                        st.rerun()
                    else:
                        st.error(payload)

            with st.form(f"edit_{aid}"):
                e1, e2 = st.columns(2)
                with e1:
                    name = st.text_input("Name", value=a["name"])
                    api_url = st.text_input("REST URL", value=a.get("api_url") or "")
                    db_host = st.text_input("Database host", value=a.get("db_host") or "")
                with e2:
                    table_name = st.text_input("Registrations table", value=a["table_name"])
                    users_table = st.text_input("Users table", value=a["users_table"])
                    api_key = st.text_input("New API key (leave blank to keep)", type="password")
                if st.form_submit_button("Save changes"):
                    body = {
                        "name": name,
                        "api_url": api_url or None,
                        "db_host": db_host or None,
                        "table_name": table_name,
                        "users_table": users_table,
                    }
                    if api_key:
                        body["api_key"] = api_key
                    ok, payload = hub_call("PATCH", f"{HUB_URL}/api/connections/{aid}", body)
                    if ok:
                        st.success("Saved.")
                        st.rerun()
                    else:
                        st.error(payload)

st.divider()

# ── Add application ────────────────────────────────────────────────────────────
with st.expander("Add application", expanded=not apps):
    with st.form("new_connection"):
        a1, a2 = st.columns(2)
        with a1:
            name = st.text_input("Name")
            description = st.text_input("Description")
            db_kind = st.selectbox("Database", DB_KINDS)
            db_host = st.text_input("Database host", placeholder="db.<project-ref>.supabase.co")
            db_port = st.text_input("Port", value="5432")
        with a2:
            db_user = st.text_input("Database user", value="postgres")
            api_url = st.text_input("REST URL (optional)", placeholder="https://<project-ref>.supabase.co")
            api_key = st.text_input("API key", type="password")
            table_name = st.text_input("Registrations table", value="registrations")
            users_table = st.text_input("Users table", value="users")
        submitted = st.form_submit_button("Connect")
        if submitted:
            if not name.strip():
                st.error("Name is required.")
            else:
                ok, payload = hub_call("POST", f"{HUB_URL}/api/connections", {
                    "name": name.strip(),
                    "description": description,
                    "db_kind": db_kind,
                    "db_host": db_host or None,
                    "db_port": db_port or None,
                    "db_user": db_user or None,
                    "api_url": api_url or None,
                    "api_key": api_key or None,
                    "table_name": table_name or "registrations",
                    "users_table": users_table or "users",
                })
                if ok:
                    st.success(f"Added {payload['name']} ({payload['id']}). First sync runs now.")
                    st.rerun()
                else:
                    st.error(payload)
