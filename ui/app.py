"""
PageCast Operator Dashboard
===========================

A small control-room view of a running PageCast service.

Architecture:
    - SESSION state, history and metrics come from PageCast via HTTP
    - CONTENT is listed, uploaded and deleted through the same API
    - Pipeline settings live in the service config.yaml, NOT here

Usage:
    streamlit run ui/app.py

Environment:
    PAGECAST_URL: service HTTP root (default: http://localhost:3200)
"""

import os
import time
from typing import Optional

import requests
import streamlit as st

# =============================================================================
# Configuration: one env var, the rest lives in the service config
# =============================================================================

SERVICE_URL = os.getenv("PAGECAST_URL", "http://localhost:3200").rstrip("/")

# =============================================================================
# Page config
# =============================================================================

st.set_page_config(
    page_title="PageCast Dashboard",
    page_icon="📡",
    layout="wide",
)

STATE_BADGES = {
    "IDLE": "⚪",
    "LAUNCHING": "🟡",
    "STREAMING": "🟢",
    "DEGRADED": "🟠",
    "TERMINATED": "🔴",
}

# =============================================================================
# Networking helpers
# =============================================================================

def fetch_json(path: str) -> Optional[dict]:
    """GET a JSON endpoint; None if the service is unreachable."""
    try:
        r = requests.get(f"{SERVICE_URL}{path}", timeout=2)
    except requests.RequestException:
        return None
    if r.headers.get("content-type", "").startswith("application/json"):
        return r.json()
    return None


def fetch_health() -> bool:
    """Check service liveness."""
    try:
        r = requests.get(f"{SERVICE_URL}/health", timeout=2)
    except requests.RequestException:
        return False
    return r.status_code == 200


def upload_content(files, text: str) -> bool:
    """Send files and ticker text to /upload."""
    payload = [("images", (f.name, f.getvalue(), f.type or "application/octet-stream")) for f in files]
    data = {"text": text} if text else {}
    try:
        r = requests.post(
            f"{SERVICE_URL}/upload",
            files=payload or None,
            data=data,
            timeout=30,
            allow_redirects=False,
        )
    except requests.RequestException as e:
        st.error(f"Upload failed: {e}")
        return False
    return r.status_code == 303


def delete_content(name: str) -> bool:
    try:
        r = requests.delete(f"{SERVICE_URL}/api/files/{name}", timeout=5)
    except requests.RequestException as e:
        st.error(f"Delete failed: {e}")
        return False
    return r.status_code == 200


# =============================================================================
# Main
# =============================================================================

def main():
    # ── Sidebar ───────────────────────────────────────────────────────────────
    with st.sidebar:
        st.header("Service")
        st.text(f"URL: {SERVICE_URL}")
        auto_refresh = st.checkbox("Auto refresh", value=True)
        refresh_rate = st.slider("Refresh (s)", 0.5, 10.0, 2.0, 0.5)

        st.divider()
        st.header("Content")
        uploads = st.file_uploader("Images", accept_multiple_files=True, type=None)
        ticker = st.text_area("Ticker text", height=80)
        if st.button("Upload", use_container_width=True):
            if upload_content(uploads or [], ticker):
                st.success("Uploaded")

    # ── Top Bar ───────────────────────────────────────────────────────────────
    top1, top2, top3, top4 = st.columns(4)

    alive = fetch_health()
    with top1:
        if alive:
            st.success("🟢 Service Online")
        else:
            st.error("🔴 Service Offline")

    status = fetch_json("/status") if alive else None
    metrics = fetch_json("/metrics") if alive else None
    info = fetch_json("/") if alive else None

    with top2:
        state = status["state"] if status else "-"
        st.markdown(f"**Session:** {STATE_BADGES.get(state, '⚪')} **{state}**")

    with top3:
        if info:
            st.markdown(f"**Target:** `{info['target_fps']:g} fps → {info['destination']}`")
        else:
            st.markdown("**Target:** `-`")

    with top4:
        if status:
            st.markdown(f"**Uptime:** `{status['uptime_seconds']:.0f}s` · **Restarts:** `{status['restarts']}`")

    if status and status.get("failed"):
        st.error(
            f"Streaming stopped permanently: {status.get('termination_reason')}. "
            f"Restart the service once the cause is fixed."
        )

    st.divider()

    # ── Main Layout: Metrics + History ────────────────────────────────────────
    left_col, right_col = st.columns([2, 1])

    with left_col:
        st.subheader("Pacer")
        if metrics:
            c1, c2, c3, c4 = st.columns(4)
            c1.metric("Delivered", metrics.get("pacer_delivered", 0))
            c2.metric("Backpressure drops", metrics.get("pacer_dropped_backpressure", 0))
            c3.metric("Capture errors", metrics.get("pacer_capture_errors", 0))
            c4.metric("Skipped ticks", metrics.get("pacer_skipped_ticks", 0))
            st.caption(f"Max lateness: {metrics.get('pacer_max_lateness_ms', 0):.1f} ms")

            st.subheader("Encoder")
            e1, e2, e3, e4 = st.columns(4)
            e1.metric("State", metrics.get("encoder_state", "-"))
            e2.metric("PID", metrics.get("encoder_pid") or "-")
            e3.metric("Crashes", metrics.get("encoder_crashes", 0))
            e4.metric("Diagnostics", metrics.get("encoder_diagnostic_errors", 0))
            if metrics.get("encoder_last_progress"):
                st.code(metrics["encoder_last_progress"])
        else:
            st.warning("No metrics yet")

    with right_col:
        st.subheader("Transitions")
        if status and status.get("history"):
            rows = [
                {
                    "time": time.strftime("%H:%M:%S", time.localtime(h["timestamp"])),
                    "from": h["from_state"],
                    "to": h["to_state"],
                    "reason": h["reason"],
                }
                for h in reversed(status["history"])
            ]
            st.dataframe(rows, use_container_width=True, hide_index=True)
        else:
            st.caption("No transitions yet")

        st.subheader("Files")
        files = fetch_json("/api/files") if alive else None
        for entry in files or []:
            name_col, del_col = st.columns([3, 1])
            name_col.text(f"{entry['name']} ({entry['size']} B)")
            if del_col.button("🗑", key=f"del-{entry['name']}"):
                if delete_content(entry["name"]):
                    st.rerun()

    # ── Auto-refresh ──────────────────────────────────────────────────────────
    if auto_refresh:
        time.sleep(refresh_rate)
        st.rerun()


if __name__ == "__main__":
    main()
