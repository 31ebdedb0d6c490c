"""Binding engine: decision logic, retry policy, timer and the ENI binder."""
