"""
tailserve test suite

Priority:
1. Path handling (traversal never reads outside the served root)
2. Diagnostic filtering and throttling
3. Dispatcher and renderer behavior
4. Bootstrap and lifecycle
"""
