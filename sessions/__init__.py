# sessions/__init__.py
