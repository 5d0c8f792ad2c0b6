"""Conversational intake backend: interview state machine, psychometric extraction and scoring."""
