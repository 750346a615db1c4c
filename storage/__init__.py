# storage/__init__.py
