"""Adapters implementing and driving the ports."""
