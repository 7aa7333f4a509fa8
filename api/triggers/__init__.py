"""Inbound trigger handling: verification, dedupe, formatting and execution."""
