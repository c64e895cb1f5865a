"""Tests for the AREA orchestrator."""
