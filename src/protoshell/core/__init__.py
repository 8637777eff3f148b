"""Parsing, dispatch and job scheduling."""
