"""
Note domain models and the cache-aside note service.
"""
