# analytics/__init__.py
