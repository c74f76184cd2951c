"""Unit tests for individual components in isolation.

Coverage:
    - streaming/: Frame decoding, event dispatch, session state machine
    - query/: Orchestration, session management, export
    - ingestion/: Upload, status polling, batch uploads
    - storage/: In-memory and JSON repositories
    - config: Defaults, environment loading and validation

HTTP backends are scripted with httpx.MockTransport.
"""
