"""Asynchronous generation task orchestration, polling and result history."""
