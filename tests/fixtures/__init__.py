"""Test fixtures for swarm-fleet."""
