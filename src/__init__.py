"""
Package marker for the dashboard filter engine sources under `src`.
It groups the engine package and the shared settings/logging helpers under one stable import path.
Most functionality lives in `src.filter_engine`; this file intentionally stays lightweight.
"""
