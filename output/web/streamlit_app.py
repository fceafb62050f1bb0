import os
import time
from io import BytesIO

import requests
import streamlit as st
from streamlit_autorefresh import st_autorefresh

REFRESH_S = 1.0
REQUEST_TIMEOUT_S = 0.8
HEARTBEAT_STALE_POLLS = 3
BASE_URL = os.environ.get("KIOSK_HMI_URL", "http://127.0.0.1:8000").rstrip("/")

STATUS_COLORS = {
    "waiting": "#9aa0a6",
    "processing": "#3b82f6",
    "success": "#2ecc71",
    "error": "#ff4d4d",
}
WARNING_COLOR = "#ffb020"

st.set_page_config(
    page_title="Attendance Kiosk", layout="wide", initial_sidebar_state="collapsed"
)

st_autorefresh(interval=int(REFRESH_S * 1000), key="auto_refresh")

st.markdown(
    """
    <style>
      .block-container { padding: 0.3rem 0.8rem; }
      div[data-testid="stButton"] button { width: 100%; height: 44px; margin: 0; }
      header, footer { visibility: hidden; height: 0; }
      #MainMenu { visibility: hidden; }
    </style>
    """,
    unsafe_allow_html=True,
)


def fetch_status(base_url: str):
    try:
        r = requests.get(f"{base_url}/status", timeout=REQUEST_TIMEOUT_S)
        r.raise_for_status()
        return r.json()
    except (requests.RequestException, ValueError):
        return None


def fetch_preview(base_url: str):
    try:
        r = requests.get(f"{base_url}/preview/latest", timeout=REQUEST_TIMEOUT_S)
    except requests.RequestException:
        return None
    if r.status_code != 200:
        return None
    return r.content


def post_action(base_url: str, path: str):
    try:
        requests.post(f"{base_url}{path}", timeout=REQUEST_TIMEOUT_S)
    except requests.RequestException:
        return


def html_escape(text: str) -> str:
    return (text or "").replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def fmt_ms(value) -> str:
    if not isinstance(value, (int, float)):
        return ""
    return time.strftime("%H:%M:%S", time.localtime(value / 1000.0))


def _init_heartbeat_state():
    if "hb_last_seq" not in st.session_state:
        st.session_state.hb_last_seq = None
    if "hb_stale_polls" not in st.session_state:
        st.session_state.hb_stale_polls = HEARTBEAT_STALE_POLLS


def heartbeat_status(status_data: dict | None) -> str:
    _init_heartbeat_state()
    seq = status_data.get("heartbeat_seq") if status_data else None
    if not isinstance(seq, int):
        st.session_state.hb_stale_polls += 1
        return "ng"
    last = st.session_state.hb_last_seq
    st.session_state.hb_last_seq = seq
    if last is None or seq < last:
        st.session_state.hb_stale_polls = 0
        return "pending"
    if seq > last:
        st.session_state.hb_stale_polls = 0
        return "ok"
    st.session_state.hb_stale_polls += 1
    return "ok" if st.session_state.hb_stale_polls < HEARTBEAT_STALE_POLLS else "ng"


def build_result_html(state: dict, notice: dict | None) -> str:
    status = state.get("status", "waiting")
    color = STATUS_COLORS.get(status, "#ffffff")
    if status == "success" and state.get("warning"):
        color = WARNING_COLOR
    if status == "waiting":
        title = "Look at the camera"
        body = "Choose Check in or Check out"
        if notice:
            title = notice.get("title", title)
            body = notice.get("message", body)
            color = WARNING_COLOR
    elif status == "processing":
        title = "Processing..."
        body = "Please hold still"
    else:
        title = state.get("title", "")
        body = state.get("message", "")
    lines = [
        f"<div style='font-size:1.6rem;font-weight:700;color:{color};'>{html_escape(title)}</div>",
        f"<div style='font-size:1.1rem;margin-top:4px;'>{html_escape(body)}</div>",
    ]
    user = state.get("user")
    if user:
        lines.append(
            "<div style='margin-top:8px;font-size:1.2rem;'>"
            f"<b>{html_escape(user.get('name', ''))}</b> &middot; "
            f"{html_escape(str(user.get('employee_id', '')))} &middot; "
            f"{html_escape(user.get('department', ''))} &middot; {fmt_ms(user.get('time_ms'))}"
            "</div>"
        )
    if state.get("warning"):
        lines.append(
            f"<div style='margin-top:6px;color:{WARNING_COLOR};'>"
            f"Warning: {html_escape(state['warning'])}</div>"
        )
    return "".join(lines)


def build_table_html(records: list[dict]) -> str:
    rows_html = []
    for rec in records:
        res = str(rec.get("result", ""))
        color = STATUS_COLORS.get(res, "#ffffff")
        if res == "success" and rec.get("warning"):
            color = WARNING_COLOR
        employee = rec.get("employee") or {}
        rows_html.append(
            "<tr>"
            f"<td>{html_escape(str(rec.get('seq', 0)).rjust(5, '0'))}</td>"
            f"<td>{html_escape(rec.get('event_type', ''))}</td>"
            f"<td style='color:{color}'>{html_escape(rec.get('result_code', ''))}</td>"
            f"<td>{html_escape(str(employee.get('name') or employee.get('id') or ''))}</td>"
            f"<td>{html_escape(fmt_ms(rec.get('started_at_ms')))}</td>"
            f"<td>{float(rec.get('duration_ms', 0.0)):.0f}</td>"
            "</tr>"
        )
    header = "".join(
        f"<th style='text-align:left;padding:4px 6px;border-bottom:1px solid #ddd;'>{h}</th>"
        for h in ("ID", "Type", "Result", "Employee", "Time", "ms")
    )
    return (
        "<table style='width:100%;border-collapse:collapse;'>"
        f"<thead><tr>{header}</tr></thead>"
        "<tbody>" + "".join(rows_html) + "</tbody></table>"
    )


status_data = fetch_status(BASE_URL)
left, right = st.columns([6, 4], gap="medium")

with left:
    if status_data is not None:
        img_bytes = fetch_preview(BASE_URL)
        if img_bytes:
            st.image(BytesIO(img_bytes), width="stretch")
        else:
            st.info("No capture yet")
        detection = status_data.get("detection")
        if detection:
            st.caption(
                f"Confidence {detection.get('confidence', 0):.2f} · "
                f"{detection.get('landmarks', 0)} landmarks · "
                f"face {detection.get('face_w', 0)}x{detection.get('face_h', 0)}px"
            )
    else:
        st.warning("Kiosk service unreachable")

with right:
    st.markdown(
        "<div style='display:flex;justify-content:space-between;align-items:center;'>"
        "<div style='font-size:1.6rem;font-weight:600;'>Attendance</div>"
        f"<div style='font-size:1.5rem;font-weight:600;'>{time.strftime('%H:%M:%S')}</div>"
        "</div>",
        unsafe_allow_html=True,
    )

    if status_data is None:
        st.info("No status")
    else:
        state = status_data.get("state") or {}
        camera = status_data.get("camera") or {}
        processing = state.get("status") == "processing"
        st.markdown(
            build_result_html(state, status_data.get("notice")), unsafe_allow_html=True
        )
        st.markdown("<div style='height:8px;'></div>", unsafe_allow_html=True)

        in_col, out_col, reset_col = st.columns(3, gap="small")
        with in_col:
            if st.button("Check in", disabled=processing):
                post_action(BASE_URL, "/trigger/checkin")
        with out_col:
            if st.button("Check out", disabled=processing):
                post_action(BASE_URL, "/trigger/checkout")
        with reset_col:
            if st.button("Reset", disabled=processing):
                post_action(BASE_URL, "/reset")

        mode_col, cam_col = st.columns(2, gap="small")
        mode = status_data.get("mode", "manual")
        with mode_col:
            next_mode = "manual" if mode == "auto" else "auto"
            if st.button(f"Mode: {mode.upper()}"):
                post_action(BASE_URL, f"/mode/{next_mode}")
        with cam_col:
            enabled = bool(camera.get("enabled", True))
            label = "Camera: ON" if enabled else "Camera: OFF"
            if st.button(label):
                post_action(BASE_URL, "/camera/disable" if enabled else "/camera/enable")

        stats = status_data.get("stats") or {}
        st.caption(
            f"Total {stats.get('total', 0)} · Success {stats.get('success', 0)} · "
            f"Warnings {stats.get('warning', 0)} · Errors {stats.get('error', 0)} · "
            f"Camera {'ready' if camera.get('ready') else 'not ready'}"
        )
        records = status_data.get("records") or []
        if records:
            st.markdown(build_table_html(records), unsafe_allow_html=True)

    runtime_state = heartbeat_status(status_data)
    dot_color, status_text = {
        "ok": ("#2ecc71", "Runtime: Online"),
        "pending": ("#777777", "Runtime: Connecting..."),
    }.get(runtime_state, ("#ff4d4d", "Runtime: Offline"))
    st.markdown(
        f"<div style='display:flex;align-items:center;gap:8px;margin-top:8px;'>"
        f"<span style='width:10px;height:10px;border-radius:50%;background:{dot_color};display:inline-block;'></span>"
        f"<span>{status_text}</span></div>",
        unsafe_allow_html=True,
    )
