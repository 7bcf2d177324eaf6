"""Domain services: allocation, lifecycle, dispatch and file management."""
