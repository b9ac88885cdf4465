"""Streamlit chat over uploaded documents."""

import asyncio
import tempfile
import uuid
from pathlib import Path

import streamlit as st

from docchat import DocChatPipeline, QueryOptions, QueryValidationError
from docchat.config import config

USER_ID = "local-user"
CANDIDATE_PREVIEW_LENGTH = 300

config.setup_logging()
logger = config.get_logger(__name__)


def initialize_session() -> None:
    defaults = {
        "pipeline": None,
        "chat_id": uuid.uuid4().hex,
        "messages": [],
        "processed_files": set(),
    }
    for key, default_value in defaults.items():
        if key not in st.session_state:
            st.session_state[key] = default_value


def get_pipeline() -> DocChatPipeline | None:
    """Create the pipeline on first use.

    Returns:
        The pipeline, or None when configuration is invalid.
    """
    if st.session_state.pipeline is not None:
        return st.session_state.pipeline
    try:
        config.validate()
        with st.spinner("Initializing DocChat..."):
            st.session_state.pipeline = DocChatPipeline.from_config()
    except (ValueError, RuntimeError, OSError) as e:
        logger.exception("Failed to initialize pipeline")
        st.error(f"Failed to initialize DocChat: {e}")
        return None
    logger.info("DocChat pipeline initialized")
    return st.session_state.pipeline


def ingest_upload(pipeline: DocChatPipeline, uploaded_file) -> None:  # noqa: ANN001
    suffix = Path(uploaded_file.name).suffix
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as tmp_file:
        tmp_file.write(uploaded_file.getbuffer())
        tmp_path = Path(tmp_file.name)
    try:
        with st.spinner(f"Processing '{uploaded_file.name}'..."):
            result = asyncio.run(
                pipeline.ingest_file(USER_ID, tmp_path, filename=uploaded_file.name)
            )
    except (OSError, ValueError, RuntimeError) as e:
        logger.exception("Document processing failed")
        st.error(f"Failed to process '{uploaded_file.name}': {e}")
        return
    finally:
        tmp_path.unlink(missing_ok=True)

    st.session_state.processed_files.add(uploaded_file.name)
    indexed = "" if result.indexed else " (text search only)"
    st.success(f"'{result.filename}' ready: {result.chunks_created} chunks{indexed}")


def render_sidebar(pipeline: DocChatPipeline) -> None:
    with st.sidebar:
        st.header("Documents")
        uploads = st.file_uploader(
            "Upload PDF, TXT or Markdown files",
            type=["pdf", "txt", "md"],
            accept_multiple_files=True,
        )
        for uploaded_file in uploads or []:
            if uploaded_file.name not in st.session_state.processed_files:
                ingest_upload(pipeline, uploaded_file)

        for summary in pipeline.memory.document_summaries(USER_ID):
            with st.expander(summary.filename):
                st.caption(f"Uploaded {summary.uploaded_at}")
                st.write(summary.summary)
                if summary.key_topics:
                    st.caption("Topics: " + ", ".join(summary.key_topics[:8]))
                if st.button("Delete", key=f"delete-{summary.document_id}"):
                    asyncio.run(pipeline.delete_document(USER_ID, summary.document_id))
                    st.rerun()

        st.divider()
        st.header("Conversation")
        use_cache = st.checkbox("Reuse answers for repeated questions", value=True)
        st.session_state.use_cache = use_cache

        stats = pipeline.memory.chat_statistics(USER_ID, st.session_state.chat_id)
        st.write(f"**Turns:** {stats['total_turns']}")

        if st.button("New Chat", use_container_width=True):
            pipeline.memory.clear_chat(USER_ID, st.session_state.chat_id)
            st.session_state.chat_id = uuid.uuid4().hex
            st.session_state.messages = []
            st.rerun()
        if st.button("Clear All Memory", use_container_width=True):
            pipeline.memory.clear_user(USER_ID)
            st.session_state.messages = []
            st.rerun()


def render_answer_details(metadata: dict, candidates: list) -> None:
    with st.expander("Answer details", expanded=False):
        cols = st.columns(4)
        cols[0].metric("Intent", metadata.get("intent", "-"))
        cols[1].metric("Confidence", f"{metadata.get('confidence', 0):.2f}")
        temperature = metadata.get("temperature")
        cols[2].metric(
            "Temperature", "-" if temperature is None else f"{temperature:.1f}"
        )
        cols[3].metric("Cached", "yes" if metadata.get("from_cache") else "no")
        st.write(f"**Mode:** {metadata.get('mode', '-')}")
        strategies = ", ".join(metadata.get("strategies", [])) or "none"
        st.write(f"**Strategies:** {strategies}")
        if metadata.get("degraded"):
            st.warning("Degraded: " + ", ".join(metadata["degraded"]))
        if config.is_development():
            st.json(metadata, expanded=False)
        for index, candidate in enumerate(candidates, start=1):
            st.caption(
                f"{index}. {candidate.filename} via {candidate.source_strategy} "
                f"(score {candidate.final_score:.3f})"
            )
            text = candidate.text
            if len(text) > CANDIDATE_PREVIEW_LENGTH:
                text = text[:CANDIDATE_PREVIEW_LENGTH] + "..."
            st.code(text)


def render_chat(pipeline: DocChatPipeline) -> None:
    for message in st.session_state.messages:
        with st.chat_message(message["role"]):
            st.markdown(message["content"])
            if message["role"] == "assistant":
                render_answer_details(message["metadata"], message["candidates"])

    query = st.chat_input("Ask about your documents or just chat...")
    if not query:
        return

    st.session_state.messages.append({"role": "user", "content": query})
    with st.chat_message("user"):
        st.markdown(query)

    options = QueryOptions(use_cache=st.session_state.get("use_cache", True))
    with st.chat_message("assistant"), st.spinner("Thinking..."):
        try:
            result = pipeline.answer_query_sync(
                USER_ID, st.session_state.chat_id, query, options
            )
        except QueryValidationError as e:
            st.error(str(e))
            return
        st.markdown(result.response)
        render_answer_details(result.metadata, result.relevant_chunks)

    st.session_state.messages.append(
        {
            "role": "assistant",
            "content": result.response,
            "metadata": result.metadata,
            "candidates": result.relevant_chunks,
        }
    )


def main() -> None:
    """Main entry point for the Streamlit web application."""
    st.set_page_config(page_title="DocChat", layout="wide")
    initialize_session()

    st.title("DocChat")
    st.caption("Ask questions about your uploaded documents.")

    pipeline = get_pipeline()
    if pipeline is None:
        st.info("Set OPENAI_API_KEY in your environment or .env file to get started.")
        return

    render_sidebar(pipeline)
    render_chat(pipeline)


if __name__ == "__main__":
    main()
