"""
Test suite for amlrun.

Run all tests:
    pytest tests/ -v

Run with markers:
    pytest -m parallel -v   # foreach backends and the worker entry script
    pytest -m cli -v        # typer CLI
"""
