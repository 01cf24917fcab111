"""
Integration tests for the eventmigrate library.

These tests run complete migrations against SQLite files created under
pytest's tmp_path; no external infrastructure is needed.

Run integration tests:
    pytest tests/integration/ -v

Run only end-to-end scenarios:
    pytest tests/integration/ -v -m e2e

Skip integration tests:
    pytest tests/ -v -m "not integration"
"""
