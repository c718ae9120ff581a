"""Unit tests for cloud provider adapters."""
