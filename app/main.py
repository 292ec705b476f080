"""
Streamlit Frontend for Ledger Assistant

A chat window over the conversation engine. The engine does all the
work; this page only renders what it returns.

DESIGN PRINCIPLES:
1. Simple, clear interface
2. Explicit confirmation before anything is posted
3. Clear error messages in simple language
4. No hidden actions

Preview responses are shown as an editable form. Submitting the form
sends the edited fields back as a JSON message; Confirm and Cancel send
"confirm" and "cancel".
"""

import asyncio
import json
from uuid import uuid4

import streamlit as st

from ledger_assistant.config import get_settings, validate_all_settings
from ledger_assistant.models.conversation import EngineRequest, EngineResponse, ResponseType
from ledger_assistant.orchestrator import AppComponents, create_app_components


# Page configuration
st.set_page_config(
    page_title="Ledger Assistant",
    page_icon="📒",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
    .stButton>button {
        width: 100%;
        margin-top: 10px;
    }
</style>
""", unsafe_allow_html=True)


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_components() -> AppComponents:
    """Get or create application components (cached)."""
    return create_app_components()


def init_session():
    if "conversation_id" not in st.session_state:
        st.session_state.conversation_id = str(uuid4())
    if "history" not in st.session_state:
        # (role, EngineResponse or str)
        st.session_state.history = []


def send(components: AppComponents, text: str):
    """Send one message to the engine and record both sides."""
    request = EngineRequest(
        message=text,
        conversation_id=st.session_state.conversation_id,
        user_id=st.session_state.get("user_id", ""),
        model=st.session_state.get("model"),
    )
    st.session_state.history.append(("user", text))
    with st.spinner("Working on it..."):
        response = run_async(components.engine.handle(request))
    st.session_state.history.append(("assistant", response))


def main():
    """Main application entry point."""
    components = get_components()
    init_session()

    st.sidebar.title("📒 Ledger Assistant")
    st.sidebar.markdown("---")
    st.session_state.user_id = st.sidebar.text_input(
        "User ID",
        value=st.session_state.get("user_id", ""),
        help="Your records are kept separately per user",
    )
    try:
        gemini = get_settings().gemini
        models = gemini.allowed_models_list
        st.session_state.model = st.sidebar.selectbox(
            "Model",
            options=models,
            index=models.index(gemini.model_name) if gemini.model_name in models else 0,
        )
    except Exception as e:
        st.sidebar.error(f"Gemini is not configured: {e}")

    if st.sidebar.button("🧹 New Conversation"):
        st.session_state.conversation_id = str(uuid4())
        st.session_state.history = []
        st.rerun()

    st.sidebar.markdown("---")
    st.sidebar.markdown(
        """
        **Try saying:**
        - "Invoice John 500 for consulting"
        - "list invoices"
        - "send invoice INV-0001"
        - "edit invoice INV-0002"
        """
    )

    page = st.sidebar.radio("Navigate to:", ["💬 Chat", "⚙️ Settings"], index=0)
    if page == "💬 Chat":
        render_chat_page(components)
    else:
        render_settings_page()


def render_chat_page(components: AppComponents):
    """Render the chat page."""
    st.title("💬 Chat")

    history = st.session_state.history
    for i, (role, item) in enumerate(history):
        with st.chat_message(role):
            if role == "user":
                st.markdown(item)
            else:
                is_last = i == len(history) - 1
                render_response(components, item, interactive=is_last)

    text = st.chat_input("What would you like to do?")
    if text:
        send(components, text)
        st.rerun()


def render_response(components: AppComponents, response: EngineResponse, interactive: bool):
    if response.type == ResponseType.ERROR:
        st.error(response.response)
        return

    st.markdown(response.response)

    if response.type == ResponseType.PREVIEW and isinstance(response.data, dict):
        if interactive:
            render_preview_form(components, response.data)
        else:
            st.json(response.data, expanded=False)
    elif response.type == ResponseType.SUCCESS and response.data:
        render_result(response.data)


def render_preview_form(components: AppComponents, data: dict):
    """Editable preview; totals are recomputed by the engine on submit."""
    derived = ("subtotal", "tax_amount", "total_amount", "total_debits", "total_credits")
    with st.form(key=f"preview-{len(st.session_state.history)}"):
        edited = {}
        for key, value in data.items():
            if key in derived:
                continue
            label = key.replace("_", " ").title()
            if key == "lines" and isinstance(value, list):
                rows = [{k: v for k, v in line.items() if k != "amount"} for line in value]
                edited[key] = st.data_editor(rows, num_rows="dynamic", key=f"lines-{key}")
            elif isinstance(value, bool):
                edited[key] = st.checkbox(label, value=value)
            elif isinstance(value, (int, float)):
                edited[key] = st.number_input(label, value=float(value), step=0.01, format="%.2f")
            else:
                edited[key] = st.text_input(label, value="" if value is None else str(value))

        for key in derived:
            if key in data:
                st.markdown(f"**{key.replace('_', ' ').title()}:** {data[key]:,.2f}")

        submitted = st.form_submit_button("✏️ Update Preview")

    if submitted:
        send(components, json.dumps(edited, default=str))
        st.rerun()

    col1, col2 = st.columns(2)
    with col1:
        if st.button("✅ Confirm", type="primary"):
            send(components, "confirm")
            st.rerun()
    with col2:
        if st.button("❌ Cancel"):
            send(components, "cancel")
            st.rerun()


def render_result(data):
    if isinstance(data, dict):
        lines = data.get("lines")
        if isinstance(lines, list) and lines:
            st.dataframe(lines, use_container_width=True)
        with st.expander("🔍 Details"):
            st.json(data)
    elif isinstance(data, list) and data:
        st.dataframe(data, use_container_width=True)


def render_settings_page():
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Connection Status")

    status = validate_all_settings()

    services = [
        ("Gemini (AI)", "gemini"),
        ("Google Sheets (Storage)", "google_sheets"),
        ("Account Codes", "accounts"),
        ("Engine", "engine"),
    ]

    for name, key in services:
        if status.get(key, False):
            st.success(f"✅ {name} - Configured")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown("---")
    st.markdown("### Configuration")
    st.markdown(
        "To configure the application, create a `.env` file with your API keys. "
        "Set `ENGINE_STORAGE_BACKEND=sheets` to keep records in Google Sheets."
    )


if __name__ == "__main__":
    main()
