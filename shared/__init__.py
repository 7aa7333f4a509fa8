"""Shared configuration, logging, persistence and store utilities."""
