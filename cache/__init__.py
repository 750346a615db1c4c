# cache/__init__.py
