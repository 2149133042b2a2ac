"""
frontend/app.py — Streamlit chat UI for the weather chatbot.

Renders the Conversation state and forwards widget events to it. Speech
controls are only shown when the matching capability was detected at startup.
"""

import asyncio
import time

import streamlit as st

from conversation import Conversation
from speech import make_recognition_backend, make_speech_output

st.set_page_config(page_title="AI 날씨 챗봇", page_icon="🌤️", layout="centered")


# ── Session state ──────────────────────────────────────────────────────────────

if "conversation" not in st.session_state:
    st.session_state.conversation = Conversation(
        speech_output=make_speech_output(),
        recognition_backend=make_recognition_backend(),
    )

conversation: Conversation = st.session_state.conversation


def _on_submit() -> None:
    asyncio.run(conversation.submit(st.session_state.draft))


# ── Header ─────────────────────────────────────────────────────────────────────

title_col, speak_col = st.columns([6, 1])
title_col.title("🌤️ AI 날씨 챗봇")
if conversation.state.tts_available:
    speak_col.button(
        "🔊" if conversation.state.auto_speak else "🔇",
        help="자동 읽기 끄기" if conversation.state.auto_speak else "자동 읽기 켜기",
        on_click=conversation.toggle_auto_speak,
    )

# ── Render chat history ────────────────────────────────────────────────────────

state = conversation.state

for msg in state.messages:
    with st.chat_message(msg.role):
        st.markdown(msg.content)
        if msg.meta is not None:
            st.caption(f"📍 {msg.meta.city}  🌡️ {msg.meta.temperature}°C")
        if msg.role == "assistant" and state.tts_available:
            st.button(
                "🔊",
                key=f"speak-{msg.id}",
                help="메시지 읽기",
                on_click=conversation.request_speak,
                args=(msg.content,),
            )

if state.request_in_flight:
    with st.chat_message("assistant"):
        st.markdown("…")

# ── Input ──────────────────────────────────────────────────────────────────────

st.session_state.draft = state.draft_input

mic_col, form_col = st.columns([1, 7])
if state.stt_available:
    mic_col.button(
        "⏹" if state.listening else "🎤",
        help="음성 인식 중지" if state.listening else "음성 입력 시작",
        on_click=conversation.toggle_listening,
    )

# Enter inside the form submits, same as clicking 전송.
with form_col.form("composer", border=False):
    input_col, send_col = st.columns([6, 1])
    input_col.text_input(
        "message",
        key="draft",
        placeholder="듣는 중..." if state.listening else "날씨를 물어보세요. 예) 서울 날씨 어때?",
        disabled=state.request_in_flight or state.listening,
        label_visibility="collapsed",
    )
    send_col.form_submit_button(
        "전송",
        on_click=_on_submit,
        disabled=state.request_in_flight,
    )

# Recognition results arrive on a worker thread; poll until the session closes.
if state.listening:
    time.sleep(0.5)
    st.rerun()
