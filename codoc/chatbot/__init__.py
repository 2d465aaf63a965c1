"""Chatbot conversations: session store, state machine and streaming."""
