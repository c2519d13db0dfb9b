"""Conversation relay between a chat transport, a hosted AI assistant and human operators."""
