# chat/__init__.py
