"""Unit tests for node lifecycle coordination."""
