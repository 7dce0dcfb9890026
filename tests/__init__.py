"""
Appointment Notifier Tests

Unit tests run without PostgreSQL, Redis or the messaging gateway: stores,
transports and clocks are replaced by in-memory fakes and mocks.

Running Tests:
    # Run all tests
    pytest tests/ -v

    # Run one module
    pytest tests/unit/test_dispatcher.py -v

Test Coverage:
    - Phone normalization
    - Connection state machine and manager recovery
    - Dispatcher deduplication (send-then-record, claim-then-send)
    - Poll, push and reminder detection
    - Credential stores, repositories and the gateway client
    - Admin API routes
"""
